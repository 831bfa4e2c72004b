import logging
from typing import Optional

from fastapi import Header, HTTPException

from . import config
from .webhook_security import constant_time_compare

logger = logging.getLogger(__name__)


async def require_api_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
    """Protected routes require the shared proxy key in X-API-Key"""
    if not config.SAFE_PROXY_KEY:
        logger.error("❌ SAFE_PROXY_KEY not configured")
        raise HTTPException(status_code=500, detail="API key not configured")

    if not x_api_key:
        logger.warning("🚫 Request without X-API-Key header")
        raise HTTPException(status_code=401, detail="Missing API key")

    if not constant_time_compare(x_api_key, config.SAFE_PROXY_KEY):
        logger.warning("🚫 Request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
