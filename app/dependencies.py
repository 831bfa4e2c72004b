"""
Composition root
Process-wide calendar client and the FastAPI dependencies built on top of it
"""

import logging
from functools import lru_cache
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from . import config
from .cache import AccessTokenCache
from .database import SessionLocal, get_db
from .domain.calendar_sync.calendar_sessions import CalendarSessionsService
from .domain.calendar_sync.channels import WatchChannelService
from .domain.calendar_sync.import_service import BulkImportService
from .domain.calendar_sync.service import CalendarSyncService
from .services.google_calendar_service import GoogleCalendarClient, ServiceAccountTokenProvider

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_calendar_client() -> GoogleCalendarClient:
    """One client (and one token cache) per process"""
    logger.info(f"📅 Creating Google Calendar client for {config.GOOGLE_CALENDAR_ID or '<no calendar>'}")
    token_provider = ServiceAccountTokenProvider(
        config.GOOGLE_SERVICE_ACCOUNT_FILE,
        config.GOOGLE_CALENDAR_SCOPES,
        cache=AccessTokenCache(),
    )
    return GoogleCalendarClient(token_provider, time_zone=config.DEFAULT_TIMEZONE)


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_calendar_sync_service(
    calendar_client: GoogleCalendarClient = Depends(get_calendar_client),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> CalendarSyncService:
    """Webhook processing runs after the response, so it opens its own sessions"""
    return CalendarSyncService(
        calendar_client,
        session_factory,
        config.GOOGLE_CALENDAR_ID,
        window_seconds=config.RECENT_EVENTS_WINDOW_SECONDS,
        max_results=config.RECENT_EVENTS_MAX_RESULTS,
    )


def get_import_service(db: Session = Depends(get_db)) -> BulkImportService:
    return BulkImportService(db)


def get_channel_service(
    db: Session = Depends(get_db),
    calendar_client: GoogleCalendarClient = Depends(get_calendar_client),
) -> WatchChannelService:
    return WatchChannelService(
        db,
        calendar_client,
        config.GOOGLE_CALENDAR_ID,
        ttl_days=config.WEBHOOK_CHANNEL_TTL_DAYS,
        channel_token=config.GOOGLE_WEBHOOK_TOKEN,
    )


def get_calendar_sessions_service(
    db: Session = Depends(get_db),
    calendar_client: GoogleCalendarClient = Depends(get_calendar_client),
) -> CalendarSessionsService:
    return CalendarSessionsService(db, calendar_client, config.GOOGLE_CALENDAR_ID)
