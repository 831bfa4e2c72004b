"""
Event normalizer
Turns a raw Google Calendar event (webhook, bulk list or import payload) into a NormalizedEvent
"""

import logging
from typing import Any, Union

from pydantic import ValidationError

from ...shared.validators import normalize_email, parse_iso_datetime
from .errors import InvalidDate, InvalidEvent
from .schemas import CalendarEvent, NormalizedAttendee, NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "confirmed"


def coerce_event(raw: Union[CalendarEvent, dict[str, Any]]) -> CalendarEvent:
    """Accept either a parsed CalendarEvent or a raw dict from the API"""
    if isinstance(raw, CalendarEvent):
        return raw
    try:
        return CalendarEvent.model_validate(raw)
    except ValidationError as e:
        event_id = raw.get("id") if isinstance(raw, dict) else None
        logger.warning(f"⚠️ Malformed calendar event payload: {e}")
        raise InvalidEvent(
            f"Malformed calendar event {event_id or '<unknown>'}: {e.error_count()} validation error(s)"
        ) from e


def normalize_event(raw: Union[CalendarEvent, dict[str, Any]]) -> NormalizedEvent:
    """
    Build the canonical session candidate for an event.

    The precise instant (start.dateTime) wins over the all-day date
    (start.date). Raises InvalidDate when neither is present or parseable.
    The status is passed through unchanged; a missing status is treated as
    confirmed.
    """
    event = coerce_event(raw)
    start = event.start

    session_date = None
    is_all_day = False
    raw_value = None
    if start is not None:
        if start.dateTime:
            raw_value = start.dateTime
            session_date = parse_iso_datetime(start.dateTime)
        elif start.date:
            raw_value = start.date
            session_date = parse_iso_datetime(start.date)
            is_all_day = True

    if session_date is None:
        raise InvalidDate(event.id, raw_value)

    attendees = [
        NormalizedAttendee(email=normalize_email(a.email), response_status=a.responseStatus)
        for a in event.attendees
        if normalize_email(a.email)
    ]

    return NormalizedEvent(
        event_id=event.id,
        status=event.status or DEFAULT_STATUS,
        session_date=session_date,
        is_all_day=is_all_day,
        summary=(event.summary or "").strip(),
        creator_email=normalize_email(event.creator.email) if event.creator else None,
        organizer_email=normalize_email(event.organizer.email) if event.organizer else None,
        attendees=attendees,
    )
