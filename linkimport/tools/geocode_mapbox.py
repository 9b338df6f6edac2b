"""Mapbox Search Box forward geocoding for trip destinations."""

import time

import httpx
import structlog

from linkimport.core.config import settings
from linkimport.core.metrics import api_call_duration_seconds, api_calls_total
from linkimport.core.rate_limiter import mapbox_limiter, rate_limited_call

logger = structlog.get_logger(__name__)

_FORWARD_URL = "https://api.mapbox.com/search/searchbox/v1/forward"


class GeocodeError(Exception):
    """Raised when a destination cannot be geocoded."""


async def fetch_city_coordinates(
    city: str,
    country: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Return {"latitude", "longitude"} of the best match for "city, country".

    Raises GeocodeError on missing token, HTTP error, timeout, or no features.
    """
    if not settings.MAPBOX_ACCESS_TOKEN:
        logger.error("geocode_mapbox.token_missing")
        raise GeocodeError("Mapbox access token not configured")

    search_query = f"{city}, {country}"
    params = {"q": search_query, "limit": 1, "access_token": settings.MAPBOX_ACCESS_TOKEN}

    async def _get() -> dict:
        async with httpx.AsyncClient(
            timeout=settings.PLACES_TIMEOUT_SECONDS, transport=transport
        ) as client:
            response = await client.get(_FORWARD_URL, params=params)
            response.raise_for_status()
            return response.json()

    start_time = time.perf_counter()
    try:
        data = await rate_limited_call(mapbox_limiter, "mapbox", _get)
        api_calls_total.labels(api_name="mapbox", status="success").inc()
    except httpx.HTTPStatusError as exc:
        api_calls_total.labels(api_name="mapbox", status="error").inc()
        logger.error(
            "geocode_mapbox.http_error",
            status_code=exc.response.status_code,
            destination=search_query,
        )
        raise GeocodeError(f"Geocoding failed with HTTP {exc.response.status_code}") from exc
    except httpx.TimeoutException as exc:
        api_calls_total.labels(api_name="mapbox", status="timeout").inc()
        logger.warning("geocode_mapbox.timeout", destination=search_query)
        raise GeocodeError("Geocoding timed out") from exc
    except (httpx.HTTPError, ValueError) as exc:
        api_calls_total.labels(api_name="mapbox", status="error").inc()
        logger.warning("geocode_mapbox.request_failed", error=str(exc), destination=search_query)
        raise GeocodeError(f"Geocoding failed: {exc}") from exc
    finally:
        api_call_duration_seconds.labels(api_name="mapbox").observe(
            time.perf_counter() - start_time
        )

    features = data.get("features") if isinstance(data, dict) else None
    if not features:
        raise GeocodeError(f"No results found for: {search_query}")

    # GeoJSON order is [longitude, latitude]
    try:
        longitude, latitude = features[0]["geometry"]["coordinates"][:2]
    except (KeyError, TypeError, ValueError, IndexError) as exc:
        raise GeocodeError(f"Malformed geocoding result for: {search_query}") from exc

    return {"latitude": float(latitude), "longitude": float(longitude)}
