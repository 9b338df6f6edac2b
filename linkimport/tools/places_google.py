"""Google Places (New) text search tool.

Used to turn a free-text place mention into concrete places near a destination.
Unlike fire-and-forget search tools, failures raise PlacesSearchError: the
resolver must tell "search failed" (ask the user for a map link) apart from
"no results".

No retries and no caching: one call per candidate, rate limited.
"""

import time

import httpx
import structlog

from linkimport.core.config import settings
from linkimport.core.metrics import api_call_duration_seconds, api_calls_total
from linkimport.core.rate_limiter import places_limiter, rate_limited_call

logger = structlog.get_logger(__name__)

_SEARCH_TEXT_URL = "https://places.googleapis.com/v1/places:searchText"
_MAX_RESULTS = 10
_FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.types",
    ]
)


class PlacesSearchError(Exception):
    """Raised when the Places API cannot answer a text search."""


def _normalize_place(place: dict) -> dict:
    location = place.get("location") or {}
    coordinates = None
    if "latitude" in location and "longitude" in location:
        coordinates = {"lat": location["latitude"], "lng": location["longitude"]}
    return {
        "place_id": str(place.get("id") or ""),
        "name": str((place.get("displayName") or {}).get("text") or ""),
        "address": str(place.get("formattedAddress") or ""),
        "coordinates": coordinates,
        "types": list(place.get("types") or []),
    }


async def search_places_by_text(
    query: str,
    latitude: float,
    longitude: float,
    radius_meters: int | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict]:
    """
    Search places matching query, biased to a circle around (latitude, longitude).

    Returned keys per result:
      - place_id (str):     Places API id (bare, without the "places/" prefix)
      - name (str):         Display name
      - address (str):      Formatted address, "" when missing
      - coordinates (dict): {"lat", "lng"} or None
      - types (list[str]):  Place types

    Raises PlacesSearchError on missing API key, HTTP error, timeout, or an
    unreadable response.
    """
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.error("places_google.api_key_missing")
        raise PlacesSearchError("Google Maps API key not configured")

    radius = float(radius_meters or settings.PLACES_SEARCH_RADIUS_METERS)
    payload = {
        "textQuery": query,
        "maxResultCount": _MAX_RESULTS,
        "locationBias": {
            "circle": {
                "center": {"latitude": latitude, "longitude": longitude},
                "radius": radius,
            }
        },
    }
    headers = {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": settings.GOOGLE_MAPS_API_KEY,
        "X-Goog-FieldMask": _FIELD_MASK,
    }

    async def _post() -> dict:
        async with httpx.AsyncClient(
            timeout=settings.PLACES_TIMEOUT_SECONDS, transport=transport
        ) as client:
            response = await client.post(_SEARCH_TEXT_URL, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    start_time = time.perf_counter()
    try:
        data = await rate_limited_call(places_limiter, "google_places", _post)
        api_calls_total.labels(api_name="google_places", status="success").inc()
    except httpx.HTTPStatusError as exc:
        api_calls_total.labels(api_name="google_places", status="error").inc()
        logger.error(
            "places_google.http_error",
            status_code=exc.response.status_code,
            query_preview=query[:80],
        )
        raise PlacesSearchError(f"Text search failed with HTTP {exc.response.status_code}") from exc
    except httpx.TimeoutException as exc:
        api_calls_total.labels(api_name="google_places", status="timeout").inc()
        logger.warning("places_google.timeout", query_preview=query[:80])
        raise PlacesSearchError("Text search timed out") from exc
    except (httpx.HTTPError, ValueError) as exc:
        api_calls_total.labels(api_name="google_places", status="error").inc()
        logger.warning("places_google.request_failed", error=str(exc), query_preview=query[:80])
        raise PlacesSearchError(f"Text search failed: {exc}") from exc
    finally:
        api_call_duration_seconds.labels(api_name="google_places").observe(
            time.perf_counter() - start_time
        )

    places = data.get("places") if isinstance(data, dict) else None
    if not places or not isinstance(places, list):
        logger.info("places_google.empty_results", query_preview=query[:80])
        return []

    results = [_normalize_place(place) for place in places if isinstance(place, dict)]
    logger.info("places_google.success", result_count=len(results), query_preview=query[:80])
    return results
