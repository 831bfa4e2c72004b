"""Watch channel management - Registers and stops Google Calendar push channels"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...cache import utcnow
from ...models import CalendarWebhook
from ...services.google_calendar_service import new_channel_id
from .errors import UpstreamUnavailable
from .repository import SessionSyncRepository

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/calendar-webhook"


class WatchChannelService:
    """Keeps exactly one registered push channel per deployment"""

    def __init__(
        self,
        db: Session,
        calendar_client,
        calendar_id: str,
        ttl_days: int = 7,
        channel_token: Optional[str] = None,
        repo: Optional[SessionSyncRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.calendar = calendar_client
        self.calendar_id = calendar_id
        self.ttl = timedelta(days=ttl_days)
        self.channel_token = channel_token or None
        self.repo = repo or SessionSyncRepository()
        self.clock = clock

    async def stop_all_channels(self) -> int:
        """Stop every registered channel; individual failures are logged and skipped"""
        channels = self.repo.list_channels(self.db)
        logger.info(f"Found {len(channels)} webhooks to stop")

        stopped = 0
        for channel in channels:
            try:
                await self.calendar.stop_channel(channel.channel_id, channel.resource_id)
            except UpstreamUnavailable as e:
                logger.error(f"❌ Error stopping webhook {channel.channel_id}: {e}")
                continue
            self.repo.delete_channel(self.db, channel)
            self.db.commit()
            stopped += 1
            logger.info(f"Stopped and removed webhook: {channel.channel_id}")
        return stopped

    async def create_channel(self, base_url: str) -> CalendarWebhook:
        """Replace any existing channels with a new one pointing at this deployment"""
        if not base_url:
            raise ValueError("Webhook URL is required")

        await self.stop_all_channels()

        expiration = self.clock() + self.ttl
        response = await self.calendar.watch_events(
            self.calendar_id,
            address=f"{base_url.rstrip('/')}{WEBHOOK_PATH}",
            channel_id=new_channel_id(),
            expiration=expiration,
            token=self.channel_token,
        )

        if response.expiration:
            expiration = datetime.fromtimestamp(int(response.expiration) / 1000, tz=timezone.utc).replace(tzinfo=None)

        try:
            channel = self.repo.add_channel(self.db, response.id, response.resourceId, expiration)
            self.db.commit()
            self.db.refresh(channel)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✅ Webhook created successfully: {channel.channel_id} (expires {expiration})")
        return channel
