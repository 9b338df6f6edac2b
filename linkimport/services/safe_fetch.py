"""Guarded HTTP fetch for user-supplied links.

Every hop of a fetch is driven through explicit states:

    VALIDATING -> FETCHING -> REDIRECTED -> VALIDATING -> ...
                           -> DONE | FAILED

VALIDATING runs before every request, including each redirect target, so a
link that passes once cannot bounce the fetch onto a private address.
fetch() never raises: every failure comes back as a SafeFetchError value.
"""

from __future__ import annotations

import asyncio
import socket
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum

import httpx
import structlog

from linkimport.core.config import settings
from linkimport.core.constants import ALLOWED_SCHEMES, REDIRECT_STATUSES
from linkimport.core.metrics import (
    link_fetch_bytes,
    link_fetch_duration_seconds,
    link_fetch_redirects,
    link_fetch_total,
)
from linkimport.core.url_safety import parse_ip, validate_addresses, validate_host
from linkimport.services.link_types import (
    FetchErrorCode,
    SafeFetchError,
    SafeFetchOutcome,
    SafeFetchResult,
)

logger = structlog.get_logger(__name__)

DnsLookup = Callable[[str], Awaitable[list[str]]]

_ACCEPT = (
    "text/html,application/json,text/plain,application/ld+json,text/xml,"
    "application/xml;q=0.9,*/*;q=0.1"
)


class FetchState(StrEnum):
    VALIDATING = "validating"
    FETCHING = "fetching"
    REDIRECTED = "redirected"
    DONE = "done"
    FAILED = "failed"


async def resolve_host_addresses(hostname: str) -> list[str]:
    """Resolve hostname to every address the system resolver returns."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(str(info[4][0]) for info in infos))


def base_content_type(value: str | None) -> str:
    """Strip parameters from a Content-Type header ("text/html; charset=x" -> "text/html")."""
    return str(value or "").split(";", 1)[0].strip().lower()


def _declared_length(value: str | None) -> int | None:
    try:
        length = int(str(value or "").strip())
    except ValueError:
        return None
    return length if length >= 0 else None


@dataclass
class _FetchRun:
    """Mutable state for one fetch() call; never shared between calls."""

    url: httpx.URL
    timeout_seconds: float
    max_bytes: int
    redirects: list[str] = field(default_factory=list)
    pinned_address: str | None = None
    location: str = ""
    outcome: SafeFetchOutcome | None = None

    def fail(
        self, code: FetchErrorCode, message: str, status: int | None = None
    ) -> FetchState:
        self.outcome = SafeFetchError(
            url=str(self.url),
            code=code,
            message=message,
            status=status,
            redirects=list(self.redirects),
        )
        return FetchState.FAILED


class SafeFetcher:
    """Fetch one URL end-to-end without becoming an SSRF proxy.

    Guarantees:
      - scheme and host are checked on every hop before its request is sent;
        hostnames must resolve only to public addresses (all of them)
      - at most max_redirects redirects are followed
      - each hop gets its own timeout budget (not cumulative)
      - only allow-listed textual content types are read
      - no more than max_bytes of body is ever held in memory

    dns_lookup and transport are injectable so the guards can be exercised
    without network access.
    """

    def __init__(
        self,
        *,
        dns_lookup: DnsLookup | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_redirects: int | None = None,
        timeout_seconds: float | None = None,
        max_bytes: int | None = None,
        allowed_content_types: Iterable[str] | None = None,
        user_agent: str | None = None,
        accept_language: str | None = None,
        pin_resolved_ip: bool | None = None,
    ) -> None:
        self._dns_lookup = dns_lookup or resolve_host_addresses
        self._transport = transport
        self._max_redirects = (
            settings.LINK_IMPORT_MAX_REDIRECTS if max_redirects is None else max(0, max_redirects)
        )
        self._timeout_seconds = timeout_seconds or settings.LINK_IMPORT_TIMEOUT_SECONDS
        self._max_bytes = max_bytes or settings.LINK_IMPORT_MAX_BYTES
        self._allowed_content_types = frozenset(
            t.strip().lower()
            for t in (allowed_content_types or settings.LINK_IMPORT_ALLOWED_CONTENT_TYPES)
        )
        self._user_agent = user_agent or settings.LINK_IMPORT_USER_AGENT
        self._accept_language = accept_language or settings.LINK_IMPORT_ACCEPT_LANGUAGE
        self._pin_resolved_ip = (
            settings.LINK_IMPORT_PIN_RESOLVED_IP if pin_resolved_ip is None else pin_resolved_ip
        )

    async def fetch(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
        max_bytes: int | None = None,
    ) -> SafeFetchOutcome:
        """Fetch url and return a SafeFetchResult or a SafeFetchError. Never raises."""
        started = time.perf_counter()
        outcome = await self._run(
            url,
            timeout_seconds=timeout_seconds or self._timeout_seconds,
            max_bytes=max_bytes or self._max_bytes,
        )
        link_fetch_duration_seconds.observe(max(time.perf_counter() - started, 0.0))
        link_fetch_redirects.observe(len(outcome.redirects))

        if isinstance(outcome, SafeFetchResult):
            link_fetch_total.labels(status="success").inc()
            link_fetch_bytes.observe(outcome.bytes_read)
            logger.info(
                "safe_fetch.success",
                url=outcome.url[:120],
                status=outcome.status,
                content_type=outcome.content_type,
                bytes_read=outcome.bytes_read,
                redirect_count=len(outcome.redirects),
            )
        else:
            link_fetch_total.labels(status=outcome.code.value).inc()
            logger.info(
                "safe_fetch.failed",
                url=outcome.url[:120],
                code=outcome.code.value,
                status=outcome.status,
                redirect_count=len(outcome.redirects),
            )
        return outcome

    async def _run(self, url: str, *, timeout_seconds: float, max_bytes: int) -> SafeFetchOutcome:
        raw = str(url or "").strip()
        try:
            parsed = httpx.URL(raw)
        except (httpx.InvalidURL, TypeError, ValueError):
            return SafeFetchError(url=raw, code=FetchErrorCode.INVALID_URL, message="Invalid URL")
        if not parsed.scheme:
            return SafeFetchError(url=raw, code=FetchErrorCode.INVALID_URL, message="Invalid URL")

        run = _FetchRun(url=parsed, timeout_seconds=timeout_seconds, max_bytes=max_bytes)
        state = FetchState.VALIDATING
        while state not in (FetchState.DONE, FetchState.FAILED):
            if state is FetchState.VALIDATING:
                state = await self._validate(run)
            elif state is FetchState.FETCHING:
                state = await self._fetch_hop(run)
            elif state is FetchState.REDIRECTED:
                state = self._follow_redirect(run)

        if run.outcome is None:
            raise RuntimeError(f"fetch of {raw!r} ended in {state} without an outcome")
        return run.outcome

    async def _validate(self, run: _FetchRun) -> FetchState:
        url = run.url
        if url.scheme not in ALLOWED_SCHEMES:
            return run.fail(
                FetchErrorCode.DISALLOWED_PROTOCOL,
                f"Unsupported URL protocol: {url.scheme or 'none'}",
            )

        hostname = url.host
        if not hostname:
            return run.fail(FetchErrorCode.INVALID_URL, "URL has no host")

        allowed, reason = validate_host(hostname)
        if not allowed:
            logger.warning("safe_fetch.blocked", host=hostname, reason=reason, hop=len(run.redirects))
            label = "IP" if reason == FetchErrorCode.BLOCKED_IP else "hostname"
            return run.fail(FetchErrorCode(reason), f"Blocked {label}: {hostname}")

        run.pinned_address = None
        if parse_ip(hostname) is not None:
            return FetchState.FETCHING

        lookup_name = url.raw_host.decode("ascii")
        try:
            addresses = await self._dns_lookup(lookup_name)
        except Exception as exc:
            logger.warning("safe_fetch.dns_failed", host=hostname, error=str(exc))
            return run.fail(FetchErrorCode.FETCH_FAILED, f"DNS lookup failed: {exc}")

        if not addresses:
            return run.fail(
                FetchErrorCode.FETCH_FAILED, f"DNS lookup returned no addresses for {hostname}"
            )

        safe, offending = validate_addresses(addresses)
        if not safe:
            logger.warning(
                "safe_fetch.blocked",
                host=hostname,
                reason="blocked_ip",
                address=offending,
                hop=len(run.redirects),
            )
            return run.fail(FetchErrorCode.BLOCKED_IP, f"Blocked IP: {offending}")

        if self._pin_resolved_ip:
            run.pinned_address = addresses[0]
        return FetchState.FETCHING

    def _request_target(self, run: _FetchRun) -> tuple[httpx.URL, dict[str, str], dict]:
        headers = {
            "User-Agent": self._user_agent,
            "Accept-Language": self._accept_language,
            "Accept": _ACCEPT,
        }
        if run.pinned_address is None:
            return run.url, headers, {}

        # Connect to the address that was validated; keep Host and TLS SNI on the name.
        address = run.pinned_address
        host = f"[{address}]" if ":" in address else address
        headers["Host"] = run.url.netloc.decode("ascii")
        extensions = {}
        if run.url.scheme == "https":
            extensions["sni_hostname"] = run.url.raw_host.decode("ascii")
        return run.url.copy_with(host=host), headers, extensions

    def _client(self, timeout_seconds: float) -> httpx.AsyncClient:
        # Fresh pool per hop: a TLS connection to a pinned IP must never serve another hostname.
        return httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=False,
            timeout=httpx.Timeout(timeout_seconds),
            # Env proxies would bypass address validation and pinning
            trust_env=False,
        )

    async def _fetch_hop(self, run: _FetchRun) -> FetchState:
        target, headers, extensions = self._request_target(run)
        try:
            async with (
                asyncio.timeout(run.timeout_seconds),
                self._client(run.timeout_seconds) as client,
                client.stream("GET", target, headers=headers, extensions=extensions) as response,
            ):
                return await self._handle_response(response, run)
        except (TimeoutError, httpx.TimeoutException):
            return run.fail(FetchErrorCode.TIMEOUT, "Request timed out")
        except (httpx.HTTPError, OSError) as exc:
            return run.fail(FetchErrorCode.FETCH_FAILED, f"Fetch failed: {exc}")

    async def _handle_response(self, response: httpx.Response, run: _FetchRun) -> FetchState:
        status = response.status_code
        if status in REDIRECT_STATUSES:
            location = str(response.headers.get("location") or "").strip()
            if not location:
                return run.fail(
                    FetchErrorCode.REDIRECT_MISSING_LOCATION,
                    "Redirect response missing Location header",
                    status,
                )
            run.location = location
            return FetchState.REDIRECTED

        if status < 200 or status >= 300:
            return run.fail(FetchErrorCode.HTTP_ERROR, f"HTTP error: {status}", status)

        raw_type = response.headers.get("content-type")
        content_type = base_content_type(raw_type)
        if content_type not in self._allowed_content_types:
            return run.fail(
                FetchErrorCode.CONTENT_TYPE_NOT_ALLOWED,
                f"Content-Type not allowed: {raw_type or 'unknown'}",
                status,
            )

        too_large = f"Response exceeded max size ({run.max_bytes} bytes)"
        declared = _declared_length(response.headers.get("content-length"))
        if declared is not None and declared > run.max_bytes:
            return run.fail(FetchErrorCode.TOO_LARGE, too_large, status)

        # Content-Length may be absent or lie; the running total is what counts.
        body = bytearray()
        async for chunk in response.aiter_bytes():
            if len(body) + len(chunk) > run.max_bytes:
                return run.fail(FetchErrorCode.TOO_LARGE, too_large, status)
            body.extend(chunk)

        encoding = response.charset_encoding or "utf-8"
        try:
            text = body.decode(encoding, errors="replace")
        except LookupError:
            text = body.decode("utf-8", errors="replace")

        run.outcome = SafeFetchResult(
            url=str(run.url),
            status=status,
            content_type=content_type,
            text=text,
            bytes_read=len(body),
            redirects=list(run.redirects),
        )
        return FetchState.DONE

    def _follow_redirect(self, run: _FetchRun) -> FetchState:
        try:
            next_url = run.url.join(run.location)
        except httpx.InvalidURL:
            return run.fail(
                FetchErrorCode.INVALID_URL, f"Invalid redirect location: {run.location[:200]}"
            )

        run.redirects.append(str(run.url))
        run.url = next_url
        run.location = ""
        if len(run.redirects) > self._max_redirects:
            return run.fail(
                FetchErrorCode.TOO_MANY_REDIRECTS, f"Too many redirects (max {self._max_redirects})"
            )

        logger.info("safe_fetch.redirect", hop=len(run.redirects), to_url=str(next_url)[:120])
        return FetchState.VALIDATING


async def safe_fetch(
    url: str,
    *,
    timeout_seconds: float | None = None,
    max_bytes: int | None = None,
) -> SafeFetchOutcome:
    """Fetch url with the configured guardrails. Never raises."""
    return await SafeFetcher().fetch(url, timeout_seconds=timeout_seconds, max_bytes=max_bytes)
