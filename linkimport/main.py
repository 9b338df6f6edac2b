from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from linkimport.core.auth import verify_internal_token
from linkimport.core.config import settings
from linkimport.core.logging_setup import configure_logging
from linkimport.core.middleware import REQUEST_ID_HEADER, RequestIDMiddleware

configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.startup", environment=settings.ENVIRONMENT)

    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning(
            "app.startup.google_maps_key_missing",
            hint="Set GOOGLE_MAPS_API_KEY; place resolution will ask for map links without it",
        )
    if not settings.MAPBOX_ACCESS_TOKEN:
        logger.warning(
            "app.startup.mapbox_token_missing",
            hint="Set MAPBOX_ACCESS_TOKEN; destination geocoding fails without it",
        )

    yield

    logger.info("app.shutdown")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Link Import API",
        description="Guarded link fetching and place resolution for itinerary imports",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER, "X-Internal-Token"],
        max_age=3600,
    )

    app.add_middleware(RequestIDMiddleware)

    from linkimport.api.v1 import link_import

    app.include_router(link_import.router, prefix="/api/v1/link-import", tags=["link-import"])

    @app.get("/health", dependencies=[Depends(verify_internal_token)])
    async def health_check():
        """Liveness check. The service holds no connections, so this is all there is."""
        return {"status": "healthy"}

    app.mount("/metrics", make_asgi_app())

    return app


app = create_app()
