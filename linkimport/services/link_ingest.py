"""Fetch the links a user pasted into a message, guarded and de-duplicated."""

from __future__ import annotations

from collections import Counter

import structlog

from linkimport.core.config import settings
from linkimport.services.link_types import LinkFetchOutcome, SafeFetchResult
from linkimport.services.safe_fetch import SafeFetcher
from linkimport.services.url_tools import (
    detect_provider,
    extract_urls_from_text,
    normalize_url_for_dedup,
)

logger = structlog.get_logger(__name__)

_BLOCKED_CODES = frozenset({"blocked_host", "blocked_ip", "disallowed_protocol"})


async def fetch_links_from_message(
    message: str,
    *,
    max_urls: int | None = None,
    fetcher: SafeFetcher | None = None,
) -> list[LinkFetchOutcome]:
    """Extract up to max_urls links from message and fetch each one in turn.

    Links that land on an already-seen canonical URL (after redirects and
    tracking-param stripping) are skipped. Failed fetches are still returned
    so the caller can tell the user which link could not be read.
    """
    max_urls = max_urls or settings.LINK_IMPORT_MAX_URLS
    fetcher = fetcher or SafeFetcher()
    urls = extract_urls_from_text(message, max_urls=max_urls)

    outcomes: list[LinkFetchOutcome] = []
    seen: set[str] = set()
    errors_by_code: Counter[str] = Counter()
    bytes_fetched = 0

    for url in urls:
        result = await fetcher.fetch(url)
        if isinstance(result, SafeFetchResult):
            final_url = result.url
            bytes_fetched += result.bytes_read
        else:
            final_url = url
            errors_by_code[result.code.value] += 1

        canonical_url = normalize_url_for_dedup(final_url)
        if canonical_url in seen:
            continue
        seen.add(canonical_url)
        outcomes.append(
            LinkFetchOutcome(
                url=url,
                canonical_url=canonical_url,
                provider=detect_provider(final_url).value,
                result=result,
            )
        )

    logger.info(
        "link_ingest.summary",
        extracted_url_count=len(urls),
        ingested_url_count=len(outcomes),
        fetch_calls=len(urls),
        bytes_fetched=bytes_fetched,
        blocked_count=sum(n for code, n in errors_by_code.items() if code in _BLOCKED_CODES),
        fetch_errors_by_code=dict(errors_by_code),
    )
    return outcomes
