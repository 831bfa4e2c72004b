"""
Reconciliation applier
Executes a matcher decision against the sessions table, one transaction per event
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import SESSION_CANCELLED, SESSION_SCHEDULED, TherapySession
from .repository import SessionSyncRepository
from .schemas import CalendarEventProcessingResult, NormalizedEvent

logger = logging.getLogger(__name__)


class ReconciliationApplier:
    """Applies new / update / cancel decisions together with their audit-log row"""

    def __init__(self, repo: Optional[SessionSyncRepository] = None):
        self.repo = repo or SessionSyncRepository()

    def apply(
        self, db: Session, result: CalendarEventProcessingResult, event: NormalizedEvent
    ) -> Optional[TherapySession]:
        """
        Persist the decision. Returns the affected session, or None when the
        decision is a no-op (resolution error, unmatched cancellation).
        """
        if result.error:
            logger.warning(f"⚠️ Not applying event {event.event_id}: {result.error}")
            return None

        if result.event_type == "new":
            if event.is_cancelled:
                logger.info(f"ℹ️ Cancelled event {event.event_id} has no session - nothing to cancel")
                return None
            return self._apply_new(db, result, event)
        if result.event_type == "update":
            return self._in_transaction(db, event, "update", lambda: self._update(db, result, event))
        if result.event_type == "cancel":
            return self._in_transaction(db, event, "cancel", lambda: self._cancel(db, result))

        raise ValueError(f"Unknown event type: {result.event_type}")

    def _apply_new(
        self, db: Session, result: CalendarEventProcessingResult, event: NormalizedEvent
    ) -> Optional[TherapySession]:
        try:
            return self._in_transaction(db, event, "new", lambda: self._insert(db, result, event))
        except IntegrityError:
            # Another delivery of the same event inserted the row first
            existing = self.repo.find_session_by_event_id(db, event.event_id)
            if existing is None:
                raise
            logger.info(
                f"🔁 Session for event {event.event_id} already exists (id={existing.id}) - retrying as update"
            )
            retry = result.model_copy(update={"event_type": "update", "session_id": existing.id})
            return self._in_transaction(db, event, "update", lambda: self._update(db, retry, event))

    def _in_transaction(self, db: Session, event: NormalizedEvent, event_type: str, mutate):
        try:
            session = mutate()
            if session is None:
                db.rollback()
                return None
            self.repo.log_calendar_event(
                db,
                event_type=event_type,
                google_event_id=event.event_id,
                session_date=event.session_date,
                email=event.creator_email,
            )
            db.commit()
            db.refresh(session)
            logger.info(f"✅ Applied {event_type} for event {event.event_id} (session {session.id})")
            return session
        except Exception:
            db.rollback()
            raise

    def _insert(
        self, db: Session, result: CalendarEventProcessingResult, event: NormalizedEvent
    ) -> TherapySession:
        return self.repo.create_session(
            db,
            date=event.session_date,
            google_calendar_event_id=event.event_id,
            patient_id=result.patient_id,
            therapist_id=result.therapist_id,
            status=SESSION_SCHEDULED,
        )

    def _update(
        self, db: Session, result: CalendarEventProcessingResult, event: NormalizedEvent
    ) -> Optional[TherapySession]:
        session = self.repo.get_session(db, result.session_id)
        if session is None:
            logger.warning(f"⚠️ Session {result.session_id} disappeared before update")
            return None
        # Status is not touched on update
        session.date = event.session_date
        session.google_calendar_event_id = event.event_id
        session.patient_id = result.patient_id
        session.therapist_id = result.therapist_id
        db.flush()
        return session

    def _cancel(self, db: Session, result: CalendarEventProcessingResult) -> Optional[TherapySession]:
        session = self.repo.get_session(db, result.session_id)
        if session is None:
            logger.warning(f"⚠️ Session {result.session_id} disappeared before cancel")
            return None
        session.status = SESSION_CANCELLED
        db.flush()
        return session
