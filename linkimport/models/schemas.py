"""Pydantic schemas for the link import API and the place-resolution data model.

Centralised here so that services and routes share one definition. Resolution
payloads go to the itinerary layer, which expects camelCase keys
(placeId, sourceCanonicalUrl, ...); those models serialize by alias.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from linkimport.core.constants import ResolverLimits


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Place resolution
# ---------------------------------------------------------------------------


class Destination(BaseModel):
    city: str | None = None
    country: str | None = None


class Candidate(_CamelModel):
    """A loosely-described place mention pulled out of fetched content."""

    query: str | None = None
    source_canonical_url: str = ""
    evidence: str | None = None
    confidence: float | None = None


class AddPlaceOperation(_CamelModel):
    op: Literal["add_place"] = "add_place"
    place_id: str
    query: str
    name: str | None = None
    date: None = None


class Attribution(_CamelModel):
    place_id: str
    source_canonical_url: str
    snippet: str | None = None
    timestamp_seconds: int | None = None


class ClarificationOption(_CamelModel):
    place_id: str
    name: str
    address: str | None = None


class PendingClarification(_CamelModel):
    query: str
    source_canonical_url: str
    evidence: str | None = None
    options: list[ClarificationOption] = Field(
        default_factory=list, max_length=ResolverLimits.MAX_OPTIONS
    )


class ResolveResult(_CamelModel):
    operations: list[AddPlaceOperation] = Field(default_factory=list)
    attributions: list[Attribution] = Field(default_factory=list)
    clarifications: list[str] = Field(default_factory=list)
    pending_clarifications: list[PendingClarification] = Field(default_factory=list)
    dropped_count: int = 0


class ResolveRequest(_CamelModel):
    destination: Destination
    candidates: list[Candidate] = Field(default_factory=list, max_length=200)
    max_operations: int = Field(default=ResolverLimits.DEFAULT_MAX_OPERATIONS, ge=1, le=50)


# ---------------------------------------------------------------------------
# Link fetch
# ---------------------------------------------------------------------------


class FetchRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    timeout_seconds: float | None = Field(default=None, ge=0.5, le=60.0)
    max_bytes: int | None = Field(default=None, ge=1, le=20 * 1024 * 1024)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("url must not be whitespace-only")
        return v.strip()


class FetchResponse(BaseModel):
    ok: bool
    url: str
    status: int | None = None
    content_type: str | None = None
    text: str | None = None
    bytes_read: int | None = None
    code: str | None = None
    message: str | None = None
    redirects: list[str] = Field(default_factory=list)


class IngestRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)
    max_urls: int | None = Field(default=None, ge=1, le=10)


class LinkOutcomeResponse(BaseModel):
    url: str
    canonical_url: str
    provider: str
    fetch: FetchResponse


class IngestResponse(BaseModel):
    links: list[LinkOutcomeResponse] = Field(default_factory=list)
