"""Unit tests for link extraction and canonicalization helpers."""

from linkimport.core.constants import LinkProvider
from linkimport.services.url_tools import (
    detect_provider,
    extract_urls_from_text,
    normalize_url_for_dedup,
    strip_tracking_params,
)


def test_extract_urls_trims_punctuation_and_dedupes() -> None:
    text = (
        "Check (https://example.com/guide). Also https://example.com/guide, "
        "and http://blog.example.org/rome!"
    )
    assert extract_urls_from_text(text) == [
        "https://example.com/guide",
        "http://blog.example.org/rome",
    ]


def test_extract_urls_respects_max() -> None:
    text = " ".join(f"https://example.com/{i}" for i in range(5))
    assert extract_urls_from_text(text, max_urls=2) == [
        "https://example.com/0",
        "https://example.com/1",
    ]


def test_extract_urls_ignores_other_schemes() -> None:
    assert extract_urls_from_text("ftp://example.com/file and plain text") == []


def test_strip_tracking_params_keeps_meaningful_query() -> None:
    url = "https://example.com/p?id=7&utm_source=ig&fbclid=abc&igsh=x&page=2"
    assert strip_tracking_params(url) == "https://example.com/p?id=7&page=2"


def test_normalize_url_for_dedup() -> None:
    url = "HTTPS://Example.COM:443/Trips/?b=2&a=1&utm_medium=social#top"
    assert normalize_url_for_dedup(url) == "https://example.com/Trips?a=1&b=2"


def test_normalize_url_keeps_non_default_port_and_root_slash() -> None:
    assert normalize_url_for_dedup("http://example.com:8080") == "http://example.com:8080/"


def test_detect_provider() -> None:
    assert detect_provider("https://youtu.be/abc123") == LinkProvider.YOUTUBE
    assert detect_provider("https://www.youtube.com/watch?v=abc123") == LinkProvider.YOUTUBE
    assert detect_provider("https://www.tiktok.com/@a/video/1234567") == LinkProvider.TIKTOK
    assert detect_provider("https://www.instagram.com/reel/xyz/") == LinkProvider.INSTAGRAM
    assert detect_provider("https://www.tripadvisor.co.uk/Attraction") == LinkProvider.TRIPADVISOR
    assert detect_provider("https://notyoutube.com/x") == LinkProvider.WEB
