"""Process-wide request-per-second limits for the place collaborators (aiolimiter).

Candidates are searched one after another, so in practice the limiter only
bites when several resolve calls run at once in the same worker.
"""

import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from aiolimiter import AsyncLimiter

from linkimport.core.config import settings
from linkimport.core.metrics import rate_limiter_throttled_total

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Anything longer than this counts as having waited for a token.
_THROTTLE_THRESHOLD_SECONDS = 0.01

places_limiter = AsyncLimiter(max_rate=settings.PLACES_RATE_LIMIT, time_period=1.0)
mapbox_limiter = AsyncLimiter(max_rate=settings.MAPBOX_RATE_LIMIT, time_period=1.0)


async def rate_limited_call(
    limiter: AsyncLimiter,
    api_name: str,
    func: Callable[[], Awaitable[T]],
) -> T:
    """Await func() once a token is available from limiter."""
    queued_at = time.monotonic()
    async with limiter:
        waited = time.monotonic() - queued_at
        if waited > _THROTTLE_THRESHOLD_SECONDS:
            rate_limiter_throttled_total.labels(api_name=api_name).inc()
            logger.debug("rate_limiter.throttled", api_name=api_name, waited_s=round(waited, 3))
        return await func()
