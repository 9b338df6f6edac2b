import hmac

import structlog
from fastapi import Header, HTTPException

from linkimport.core.config import settings

logger = structlog.get_logger(__name__)


async def verify_internal_token(x_internal_token: str | None = Header(None)) -> bool:
    """
    Only the gateway may call this service; it forwards APIM_INTERNAL_TOKEN in
    X-Internal-Token.

    With no token configured (local dev) every request is let through.
    """
    expected = settings.APIM_INTERNAL_TOKEN
    if not expected:
        return True

    if not x_internal_token:
        logger.warning("auth.internal_token_missing")
        raise HTTPException(status_code=403, detail="Missing X-Internal-Token header")

    if not hmac.compare_digest(x_internal_token.encode(), expected.encode()):
        logger.warning("auth.internal_token_invalid")
        raise HTTPException(status_code=403, detail="Invalid X-Internal-Token")

    return True
