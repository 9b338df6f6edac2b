"""Pull links out of free text and canonicalize them for de-duplication."""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from linkimport.core.constants import LinkProvider

_URL_RE = re.compile(r"\bhttps?://[^\s<>\"']+", re.IGNORECASE)

_TRAILING_PUNCTUATION = ")]}.,!?:;"

_TRACKING_PARAMS = frozenset(
    {"fbclid", "gclid", "igshid", "igsh", "mc_cid", "mc_eid", "mkt_tok", "ref", "ref_src"}
)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def trim_trailing_punctuation(url: str) -> str:
    return str(url or "").strip().rstrip(_TRAILING_PUNCTUATION)


def extract_urls_from_text(text: str, max_urls: int = 10) -> list[str]:
    """Return up to max_urls distinct http(s) URLs in order of appearance."""
    out: list[str] = []
    seen: set[str] = set()
    for match in _URL_RE.findall(str(text or "")):
        url = trim_trailing_punctuation(match)
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(url)
        if len(out) >= max_urls:
            break
    return out


def _is_tracking_param(key: str) -> bool:
    k = key.lower()
    return k.startswith("utm_") or k in _TRACKING_PARAMS


def strip_tracking_params(url: str) -> str:
    """Drop utm_* and click/share identifiers, keeping every other param in order."""
    parsed = urlparse(str(url or "").strip())
    query = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(k)
    ]
    return urlunparse(parsed._replace(query=urlencode(query)))


def normalize_url_for_dedup(url: str) -> str:
    """Canonical form of a URL: no tracking params or fragment, lowercase host,
    no default port, no trailing slash (except root), sorted query."""
    parsed = urlparse(strip_tracking_params(url))
    scheme = parsed.scheme.lower()
    hostname = (parsed.hostname or "").lower()
    if ":" in hostname:
        hostname = f"[{hostname}]"
    try:
        port = parsed.port
    except ValueError:
        port = None
    netloc = hostname
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{hostname}:{port}"

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunparse((scheme, netloc, path, "", query, ""))


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith(f".{domain}")


def detect_provider(url: str) -> LinkProvider:
    host = (urlparse(str(url or "").strip()).hostname or "").lower()
    if _host_matches(host, "youtu.be") or _host_matches(host, "youtube.com"):
        return LinkProvider.YOUTUBE
    if _host_matches(host, "tiktok.com"):
        return LinkProvider.TIKTOK
    if _host_matches(host, "instagram.com"):
        return LinkProvider.INSTAGRAM
    if "tripadvisor." in host or host.startswith("tripadvisor"):
        return LinkProvider.TRIPADVISOR
    return LinkProvider.WEB
