"""Prometheus metrics for the link import pipeline.

Provides counters and histograms for tracking:
- Link fetch outcomes, sizes, redirect depth and latency
- Place candidate resolution outcomes
- Collaborator API call success/failure rates and response times
"""

from prometheus_client import Counter, Histogram

# Link fetch metrics
link_fetch_total = Counter(
    "link_fetch_total",
    "Total guarded link fetches",
    ["status"],  # success or the fetch error code
)

link_fetch_bytes = Histogram(
    "link_fetch_bytes",
    "Body bytes read per successful link fetch",
    buckets=[1_024, 16_384, 65_536, 262_144, 524_288, 1_048_576, 2_097_152, 8_388_608],
)

link_fetch_redirects = Histogram(
    "link_fetch_redirects",
    "Redirect hops followed per link fetch",
    buckets=[0, 1, 2, 3, 5, 10],
)

link_fetch_duration_seconds = Histogram(
    "link_fetch_duration_seconds",
    "End-to-end link fetch duration in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Candidate resolution metrics
place_candidates_total = Counter(
    "place_candidates_total",
    "Place candidates processed by outcome",
    ["outcome"],  # committed/clarification/dropped
)

# API metrics
api_calls_total = Counter(
    "api_calls_total",
    "Total external API calls",
    ["api_name", "status"],  # success/error/timeout
)

api_call_duration_seconds = Histogram(
    "api_call_duration_seconds",
    "API call duration in seconds",
    ["api_name"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Rate limiter metrics
rate_limiter_throttled_total = Counter(
    "rate_limiter_throttled_total",
    "Total requests throttled by rate limiter",
    ["api_name"],
)
