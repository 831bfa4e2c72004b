"""Calendar sync service - Webhook-driven reconciliation of calendar events into sessions"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Union

from sqlalchemy.orm import Session

from .applier import ReconciliationApplier
from .errors import InvalidEvent
from .matcher import SessionMatcher
from .normalizer import normalize_event
from .schemas import CalendarEvent, NotificationOutcome

logger = logging.getLogger(__name__)

RESOURCE_STATE_SYNC = "sync"
RESOURCE_STATE_EXISTS = "exists"


class CalendarSyncService:
    """Normalizer -> resolver -> matcher -> applier for one calendar"""

    def __init__(
        self,
        calendar_client,
        session_factory: Callable[[], Session],
        calendar_id: str,
        matcher: Optional[SessionMatcher] = None,
        applier: Optional[ReconciliationApplier] = None,
        window_seconds: int = 30,
        max_results: int = 10,
    ):
        self.calendar = calendar_client
        self.session_factory = session_factory
        self.calendar_id = calendar_id
        self.matcher = matcher or SessionMatcher()
        self.applier = applier or ReconciliationApplier(self.matcher.repo)
        self.window_seconds = window_seconds
        self.max_results = max_results

    async def process_notification(self, now: Optional[datetime] = None) -> NotificationOutcome:
        """Fetch the recently updated events and reconcile the most recent one"""
        events = await self.calendar.get_recent_events(
            self.calendar_id,
            window_seconds=self.window_seconds,
            max_results=self.max_results,
            now=now,
        )
        logger.info(f"📋 Found {len(events)} recently updated events")
        if not events:
            return NotificationOutcome(processed=False, reason="No recent events")

        for index, event in enumerate(events, start=1):
            logger.debug(
                f"  {index}. {event.id} '{event.summary or 'No title'}' "
                f"status={event.status or 'unknown'} updated={event.updated or '-'}"
            )

        # Database work runs in a worker thread so the event loop only waits on I/O
        return await asyncio.to_thread(self.process_event, events[0])

    def process_event(self, raw_event: Union[CalendarEvent, dict[str, Any]]) -> NotificationOutcome:
        """Run one event through the pipeline in its own database session"""
        try:
            event = normalize_event(raw_event)
        except InvalidEvent as e:
            logger.warning(f"⚠️ Skipping event: {e}")
            event_id = raw_event.id if isinstance(raw_event, CalendarEvent) else raw_event.get("id")
            return NotificationOutcome(processed=False, event_id=event_id, reason=str(e))

        db = self.session_factory()
        try:
            result = self.matcher.resolve_and_match(db, event, self.calendar_id)
            if result.error:
                logger.info(f"❌ Event {event.event_id} not reconciled: {result.error}")
                return NotificationOutcome(
                    processed=False,
                    event_id=event.event_id,
                    event_type=result.event_type,
                    reason=result.error,
                )

            session = self.applier.apply(db, result, event)
            return NotificationOutcome(
                processed=session is not None,
                event_id=event.event_id,
                event_type=result.event_type,
                session_id=session.id if session else None,
                reason=None if session else "No-op",
            )
        finally:
            db.close()


async def handle_calendar_notification(
    service: CalendarSyncService, channel_id: Optional[str], resource_state: Optional[str]
) -> Optional[NotificationOutcome]:
    """
    Background entry point for one webhook delivery.

    The sender already got its acknowledgement, so failures are logged and
    never re-raised; Google redelivers on its own schedule.
    """
    if resource_state == RESOURCE_STATE_SYNC:
        logger.info(f"✅ Skipping sync notification for channel {channel_id}")
        return None
    if resource_state != RESOURCE_STATE_EXISTS:
        logger.info(f"ℹ️ Received resource state '{resource_state}' - no action needed")
        return None

    logger.info(f"🔄 Processing 'exists' notification for channel {channel_id}")
    try:
        outcome = await service.process_notification()
        logger.info(f"🎯 Webhook outcome: {outcome.model_dump()}")
        return outcome
    except Exception as e:
        logger.error(f"❌ Error processing calendar notification: {str(e)}")
        logger.exception("Full webhook error traceback:")
        return None
