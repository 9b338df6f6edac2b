"""Unit tests for the guarded link fetcher (SSRF checks, redirects, size limits)."""

import asyncio

import httpx
import pytest

from linkimport.services.link_types import FetchErrorCode, SafeFetchError, SafeFetchResult
from linkimport.services.safe_fetch import SafeFetcher, base_content_type, safe_fetch

PUBLIC_IP = "93.184.216.34"


class _TrackingStream(httpx.AsyncByteStream):
    """Async body that counts how many chunks the fetcher actually pulled."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.yielded = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk


def _dns(mapping: dict[str, list[str]] | None = None):
    async def lookup(hostname: str) -> list[str]:
        lookup.calls.append(hostname)
        return (mapping or {}).get(hostname, [PUBLIC_IP])

    lookup.calls = []
    return lookup


def _fetcher(handler, *, dns_lookup=None, **kwargs) -> tuple[SafeFetcher, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    async def recording_handler(request: httpx.Request):
        seen.append(request)
        response = handler(request)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    kwargs.setdefault("pin_resolved_ip", False)
    fetcher = SafeFetcher(
        dns_lookup=dns_lookup or _dns(),
        transport=httpx.MockTransport(recording_handler),
        **kwargs,
    )
    return fetcher, seen


def _ok_text(_: httpx.Request) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/plain"}, content=b"ok")


@pytest.mark.asyncio
async def test_blocks_disallowed_protocol() -> None:
    fetcher, seen = _fetcher(_ok_text)
    res = await fetcher.fetch("file:///etc/passwd")

    assert isinstance(res, SafeFetchError)
    assert res.code == FetchErrorCode.DISALLOWED_PROTOCOL
    assert seen == []


@pytest.mark.asyncio
async def test_rejects_unparseable_url() -> None:
    fetcher, seen = _fetcher(_ok_text)
    res = await fetcher.fetch("not a url")

    assert res.ok is False
    assert res.code == FetchErrorCode.INVALID_URL
    assert seen == []


@pytest.mark.asyncio
async def test_blocks_localhost_hostname() -> None:
    dns = _dns()
    fetcher, seen = _fetcher(_ok_text, dns_lookup=dns)
    res = await fetcher.fetch("http://localhost:1234/test")

    assert res.code == FetchErrorCode.BLOCKED_HOST
    assert seen == []
    assert dns.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    ["http://127.0.0.1/test", "http://169.254.169.254/latest/meta-data/", "http://[::1]/"],
)
async def test_blocks_private_ip_literals(url: str) -> None:
    fetcher, seen = _fetcher(_ok_text)
    res = await fetcher.fetch(url)

    assert res.code == FetchErrorCode.BLOCKED_IP
    assert seen == []


@pytest.mark.asyncio
async def test_blocks_hostname_when_any_resolved_address_is_private() -> None:
    dns = _dns({"mixed.example.com": [PUBLIC_IP, "10.0.0.1"]})
    fetcher, seen = _fetcher(_ok_text, dns_lookup=dns)
    res = await fetcher.fetch("https://mixed.example.com/")

    assert res.code == FetchErrorCode.BLOCKED_IP
    assert "10.0.0.1" in res.message
    assert seen == []


@pytest.mark.asyncio
async def test_dns_failure_is_fetch_failed() -> None:
    async def failing_lookup(hostname: str) -> list[str]:
        raise OSError("Name or service not known")

    fetcher, seen = _fetcher(_ok_text, dns_lookup=failing_lookup)
    res = await fetcher.fetch("https://nope.example.com/")

    assert res.code == FetchErrorCode.FETCH_FAILED
    assert seen == []


@pytest.mark.asyncio
async def test_revalidates_redirect_into_private_ip_space() -> None:
    dns = _dns({"example.com": [PUBLIC_IP], "internal": ["10.0.0.1"]})

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "example.com":
            return httpx.Response(302, headers={"location": "http://internal/"})
        return _ok_text(request)

    fetcher, seen = _fetcher(handler, dns_lookup=dns, max_redirects=3)
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.BLOCKED_IP
    assert res.redirects == ["https://example.com/"]
    assert [r.url.host for r in seen] == ["example.com"]


@pytest.mark.asyncio
async def test_second_hop_to_loopback_is_blocked_not_followed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "example.com":
            return httpx.Response(301, headers={"location": "https://cdn.example.net/a"})
        if request.url.host == "cdn.example.net":
            return httpx.Response(302, headers={"location": "http://127.0.0.1/admin"})
        return _ok_text(request)

    fetcher, seen = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/start")

    assert res.code == FetchErrorCode.BLOCKED_IP
    assert res.url == "http://127.0.0.1/admin"
    assert res.redirects == ["https://example.com/start", "https://cdn.example.net/a"]
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_redirect_to_non_http_scheme_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"location": "ftp://example.com/file"})

    fetcher, seen = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.DISALLOWED_PROTOCOL
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_too_many_redirects() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        hop = int(request.url.params.get("hop", "0"))
        return httpx.Response(302, headers={"location": f"/loop?hop={hop + 1}"})

    fetcher, seen = _fetcher(handler, max_redirects=2)
    res = await fetcher.fetch("https://example.com/loop?hop=0")

    assert res.code == FetchErrorCode.TOO_MANY_REDIRECTS
    # max_redirects + 1 requests, never one more
    assert len(seen) == 3
    assert len(res.redirects) == 3


@pytest.mark.asyncio
async def test_redirect_without_location() -> None:
    fetcher, _ = _fetcher(lambda request: httpx.Response(302))
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.REDIRECT_MISSING_LOCATION
    assert res.status == 302


@pytest.mark.asyncio
async def test_follows_relative_redirect_and_reports_trail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/short":
            return httpx.Response(307, headers={"location": "/final"})
        return httpx.Response(
            200, headers={"content-type": "text/html; charset=utf-8"}, content=b"<p>hi</p>"
        )

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/short")

    assert isinstance(res, SafeFetchResult)
    assert res.url == "https://example.com/final"
    assert res.redirects == ["https://example.com/short"]
    assert res.content_type == "text/html"
    assert res.text == "<p>hi</p>"


@pytest.mark.asyncio
async def test_http_error_carries_status() -> None:
    fetcher, _ = _fetcher(lambda request: httpx.Response(404, content=b"missing"))
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.HTTP_ERROR
    assert res.status == 404


@pytest.mark.asyncio
async def test_rejects_content_types_that_are_not_allowed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers={"content-type": "application/octet-stream"}, content=b"binary"
        )

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.CONTENT_TYPE_NOT_ALLOWED


@pytest.mark.asyncio
async def test_content_length_over_limit_fails_without_reading_body() -> None:
    stream = _TrackingStream([b"x" * 100])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/plain", "content-length": "100"},
            stream=stream,
        )

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/", max_bytes=50)

    assert res.code == FetchErrorCode.TOO_LARGE
    assert stream.yielded == 0


@pytest.mark.asyncio
async def test_streamed_body_over_limit_aborts_after_one_extra_chunk() -> None:
    stream = _TrackingStream([b"x" * 10 for _ in range(20)])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/plain"}, stream=stream)

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/", max_bytes=50)

    assert res.code == FetchErrorCode.TOO_LARGE
    assert stream.yielded <= 6


@pytest.mark.asyncio
async def test_returns_text_for_allowed_content_types() -> None:
    fetcher, seen = _fetcher(
        lambda request: httpx.Response(
            200, headers={"content-type": "text/plain"}, content=b"hello"
        )
    )
    res = await fetcher.fetch("https://example.com/")

    assert isinstance(res, SafeFetchResult)
    assert res.ok is True
    assert res.text == "hello"
    assert res.content_type == "text/plain"
    assert res.bytes_read == 5
    assert res.redirects == []
    assert seen[0].headers["user-agent"]
    assert seen[0].headers["accept-language"]


@pytest.mark.asyncio
async def test_times_out_slow_hop() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1.0)
        return _ok_text(request)

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/", timeout_seconds=0.05)

    assert res.code == FetchErrorCode.TIMEOUT


@pytest.mark.asyncio
async def test_timeout_budget_is_per_hop() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.2)
        if request.url.path == "/a":
            return httpx.Response(302, headers={"location": "/b"})
        if request.url.path == "/b":
            return httpx.Response(302, headers={"location": "/c"})
        return _ok_text(request)

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/a", timeout_seconds=0.5)

    assert isinstance(res, SafeFetchResult)
    assert len(res.redirects) == 2


@pytest.mark.asyncio
async def test_transport_error_is_fetch_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher, _ = _fetcher(handler)
    res = await fetcher.fetch("https://example.com/")

    assert res.code == FetchErrorCode.FETCH_FAILED
    assert "connection refused" in res.message


@pytest.mark.asyncio
async def test_pins_request_to_validated_address() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == PUBLIC_IP
        assert request.headers["host"] == "example.com"
        return _ok_text(request)

    fetcher, seen = _fetcher(handler, pin_resolved_ip=True)
    res = await fetcher.fetch("https://example.com/page")

    assert isinstance(res, SafeFetchResult)
    assert res.url == "https://example.com/page"
    assert len(seen) == 1


def test_base_content_type_strips_parameters() -> None:
    assert base_content_type("Text/HTML; charset=UTF-8") == "text/html"
    assert base_content_type(None) == ""


@pytest.mark.asyncio
async def test_module_level_safe_fetch_uses_configured_guards() -> None:
    res = await safe_fetch("http://[::ffff:169.254.169.254]/latest/meta-data/")

    assert res.code == FetchErrorCode.BLOCKED_IP
    assert res.redirects == []


@pytest.mark.asyncio
async def test_each_hop_gets_its_own_connection_pool(monkeypatch) -> None:
    clients: list[httpx.AsyncClient] = []

    class RecordingClient(httpx.AsyncClient):
        def __init__(self, *args, **kwargs) -> None:
            super().__init__(*args, **kwargs)
            clients.append(self)

    monkeypatch.setattr(httpx, "AsyncClient", RecordingClient)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers["host"] == "a.example.com":
            return httpx.Response(302, headers={"location": "https://b.example.com/"})
        return _ok_text(request)

    fetcher, seen = _fetcher(handler, pin_resolved_ip=True)
    res = await fetcher.fetch("https://a.example.com/")

    assert isinstance(res, SafeFetchResult)
    assert [r.url.host for r in seen] == [PUBLIC_IP, PUBLIC_IP]
    assert [r.extensions["sni_hostname"] for r in seen] == ["a.example.com", "b.example.com"]
    assert len(clients) == 2
    assert clients[0] is not clients[1]
    assert all(c.is_closed for c in clients)
