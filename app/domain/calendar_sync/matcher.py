"""
Session matcher
Classifies a normalized event as new / update / cancel without touching storage
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .repository import SessionSyncRepository
from .resolver import PatientResolver
from .schemas import CalendarEventProcessingResult, NormalizedEvent

logger = logging.getLogger(__name__)

THERAPIST_NOT_FOUND = "Therapist not found"
PATIENT_NOT_FOUND = "Patient not found"


class SessionMatcher:
    """Pure decision layer: reads therapists, patients and sessions, never writes"""

    def __init__(
        self,
        repo: Optional[SessionSyncRepository] = None,
        resolver: Optional[PatientResolver] = None,
    ):
        self.repo = repo or SessionSyncRepository()
        self.resolver = resolver or PatientResolver(self.repo)

    def match(
        self,
        db: Session,
        event: NormalizedEvent,
        therapist_id: Optional[int],
        patient_id: Optional[int],
    ) -> CalendarEventProcessingResult:
        """Classify an event whose therapist and patient have already been resolved"""
        if therapist_id is None:
            return CalendarEventProcessingResult(event_type="new", error=THERAPIST_NOT_FOUND)
        if patient_id is None:
            return CalendarEventProcessingResult(
                event_type="new", therapist_id=therapist_id, error=PATIENT_NOT_FOUND
            )

        existing = self.repo.find_session_by_event_id(db, event.event_id)
        if existing is None:
            # An unmatched cancellation is still "new"; the applier treats it as a no-op
            event_type = "new"
        elif event.is_cancelled:
            event_type = "cancel"
        else:
            event_type = "update"

        return CalendarEventProcessingResult(
            event_type=event_type,
            session_id=existing.id if existing else None,
            therapist_id=therapist_id,
            patient_id=patient_id,
        )

    def resolve_and_match(
        self, db: Session, event: NormalizedEvent, calendar_id: str
    ) -> CalendarEventProcessingResult:
        """Resolve the therapist owning the calendar, then the patient, then classify"""
        therapist = self.repo.get_therapist_by_calendar(db, calendar_id)
        if therapist is None:
            logger.warning(f"⚠️ No therapist bound to calendar {calendar_id!r}")
            return self.match(db, event, None, None)

        patient = self.resolver.resolve(db, event, therapist.id)
        result = self.match(db, event, therapist.id, patient.id if patient else None)
        logger.info(
            f"🎯 Event {event.event_id} classified as {result.event_type} "
            f"(session={result.session_id}, patient={result.patient_id}, error={result.error})"
        )
        return result
