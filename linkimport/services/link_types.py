"""Typed contracts for the guarded link fetch stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class FetchErrorCode(StrEnum):
    INVALID_URL = "invalid_url"
    DISALLOWED_PROTOCOL = "disallowed_protocol"
    BLOCKED_HOST = "blocked_host"
    BLOCKED_IP = "blocked_ip"
    FETCH_FAILED = "fetch_failed"
    TIMEOUT = "timeout"
    REDIRECT_MISSING_LOCATION = "redirect_missing_location"
    HTTP_ERROR = "http_error"
    CONTENT_TYPE_NOT_ALLOWED = "content_type_not_allowed"
    TOO_LARGE = "too_large"
    TOO_MANY_REDIRECTS = "too_many_redirects"


@dataclass
class SafeFetchResult:
    url: str
    status: int
    content_type: str
    text: str
    bytes_read: int
    redirects: list[str] = field(default_factory=list)
    ok: bool = field(default=True, init=False)


@dataclass
class SafeFetchError:
    url: str
    code: FetchErrorCode
    message: str
    status: int | None = None
    redirects: list[str] = field(default_factory=list)
    ok: bool = field(default=False, init=False)


SafeFetchOutcome = SafeFetchResult | SafeFetchError


@dataclass
class LinkFetchOutcome:
    url: str
    canonical_url: str
    provider: str
    result: SafeFetchOutcome
