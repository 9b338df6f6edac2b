"""Link import router: guarded fetch, message ingest and place resolution."""

import structlog
from fastapi import APIRouter, Depends

from linkimport.core.auth import verify_internal_token
from linkimport.models.schemas import (
    FetchRequest,
    FetchResponse,
    IngestRequest,
    IngestResponse,
    LinkOutcomeResponse,
    ResolveRequest,
    ResolveResult,
)
from linkimport.services.candidate_resolver import resolve_place_candidates
from linkimport.services.link_ingest import fetch_links_from_message
from linkimport.services.link_types import SafeFetchOutcome, SafeFetchResult
from linkimport.services.safe_fetch import SafeFetcher

logger = structlog.get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_internal_token)])


def get_fetcher() -> SafeFetcher:
    return SafeFetcher()


def _to_fetch_response(outcome: SafeFetchOutcome) -> FetchResponse:
    if isinstance(outcome, SafeFetchResult):
        return FetchResponse(
            ok=True,
            url=outcome.url,
            status=outcome.status,
            content_type=outcome.content_type,
            text=outcome.text,
            bytes_read=outcome.bytes_read,
            redirects=outcome.redirects,
        )
    return FetchResponse(
        ok=False,
        url=outcome.url,
        status=outcome.status,
        code=outcome.code.value,
        message=outcome.message,
        redirects=outcome.redirects,
    )


@router.post("/fetch", response_model=FetchResponse)
async def fetch_link(body: FetchRequest, fetcher: SafeFetcher = Depends(get_fetcher)):
    """
    Fetch one user-supplied URL through the SSRF guard.

    Always 200: a blocked or failed fetch is a normal outcome, reported with
    ok=false and an error code.
    """
    outcome = await fetcher.fetch(
        body.url, timeout_seconds=body.timeout_seconds, max_bytes=body.max_bytes
    )
    return _to_fetch_response(outcome)


@router.post("/ingest", response_model=IngestResponse)
async def ingest_links(body: IngestRequest, fetcher: SafeFetcher = Depends(get_fetcher)):
    """Fetch every link found in a chat message (up to max_urls)."""
    outcomes = await fetch_links_from_message(body.message, max_urls=body.max_urls, fetcher=fetcher)
    return IngestResponse(
        links=[
            LinkOutcomeResponse(
                url=o.url,
                canonical_url=o.canonical_url,
                provider=o.provider,
                fetch=_to_fetch_response(o.result),
            )
            for o in outcomes
        ]
    )


@router.post("/resolve", response_model=ResolveResult)
async def resolve_candidates(body: ResolveRequest):
    """Resolve extracted place mentions into add_place operations and clarifications."""
    return await resolve_place_candidates(
        body.destination,
        body.candidates,
        max_operations=body.max_operations,
    )
