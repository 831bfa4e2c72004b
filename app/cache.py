"""
In-process credential caching
Holds one short-lived access token and refreshes it shortly before it expires
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Refresh tokens that expire within 5 minutes
DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)

TokenRefresher = Callable[[], Awaitable[tuple[str, datetime]]]


def utcnow() -> datetime:
    return datetime.utcnow()


class AccessTokenCache:
    """Single-token cache with get-or-refresh semantics and an injectable clock"""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
    ):
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def is_valid(self) -> bool:
        if not self._token or self._expires_at is None:
            return False
        return self._clock() + self._refresh_margin < self._expires_at

    async def get_or_refresh(self, refresh: TokenRefresher) -> str:
        """Return the cached token, calling `refresh` first when it is missing or about to expire"""
        async with self._lock:
            if self.is_valid():
                return self._token

            logger.info("🔄 Access token missing or expiring, refreshing...")
            token, expires_at = await refresh()
            self._token = token
            self._expires_at = expires_at
            logger.info(f"✅ Access token refreshed (expires at {expires_at.isoformat()})")
            return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = None
