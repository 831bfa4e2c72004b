"""
Bulk import service - Imports calendar sessions for onboarding

Each call is a single transaction: patients and sessions are upserted, then
payment status is seeded from the billing start date, and any failure rolls
the whole batch back.
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Callable, Optional, Union

from sqlalchemy.orm import Session

from ...cache import utcnow
from ...models import (
    PAYMENT_NOT_BILLED,
    PAYMENT_PENDING,
    SESSION_CANCELLED,
    SESSION_SCHEDULED,
    Patient,
    Therapist,
    TherapySession,
)
from .errors import InvalidEvent, TherapistNotFound
from .normalizer import normalize_event
from .repository import SessionSyncRepository
from .resolver import PatientResolver, extract_patient_email, extract_patient_name
from .schemas import (
    CalendarEvent,
    ImportEventsResponse,
    ImportPatientResponse,
    ImportStats,
    PatientImportData,
    SkippedEvent,
)

logger = logging.getLogger(__name__)

UNMATCHED_PATIENT_LABEL = "Paciente não identificado"


def seed_payment_status(
    sessions: list[TherapySession], billing_start_date: Optional[date], now: datetime
) -> int:
    """
    Sessions on/after the billing start date become `pending` when already in
    the past and `not_billed` otherwise. Earlier sessions are left alone.
    Returns the number of sessions seeded.
    """
    if billing_start_date is None:
        return 0

    seeded = 0
    for session in sessions:
        if session.date.date() < billing_start_date:
            continue
        session.payment_status = PAYMENT_PENDING if session.date <= now else PAYMENT_NOT_BILLED
        seeded += 1
    return seeded


class BulkImportService:
    """Service layer for calendar imports"""

    def __init__(
        self,
        db: Session,
        repo: Optional[SessionSyncRepository] = None,
        resolver: Optional[PatientResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = repo or SessionSyncRepository()
        self.resolver = resolver or PatientResolver(self.repo)
        self.clock = clock

    def _get_therapist(self, therapist_email: str) -> Therapist:
        therapist = self.repo.get_therapist_by_email(self.db, therapist_email)
        if not therapist:
            raise TherapistNotFound(f"Therapist not found: {therapist_email}")
        return therapist

    def _upsert_session(
        self,
        therapist_id: int,
        patient: Optional[Patient],
        google_event_id: str,
        session_date: datetime,
        status: str,
        unmatched_label: Optional[str] = None,
    ) -> TherapySession:
        existing = self.repo.find_session_by_event_id(self.db, google_event_id)
        if existing:
            existing.date = session_date
            existing.patient_id = patient.id if patient else None
            existing.therapist_id = therapist_id
            existing.status = status
            existing.unmatched_label = unmatched_label
            self.db.flush()
            logger.debug(f"✅ Updated existing session for event {google_event_id}")
            return existing

        session = self.repo.create_session(
            self.db,
            date=session_date,
            google_calendar_event_id=google_event_id,
            patient_id=patient.id if patient else None,
            therapist_id=therapist_id,
            status=status,
            # Price is inherited only when the session is first created
            session_price=patient.session_price if patient else None,
            unmatched_label=unmatched_label,
        )
        logger.debug(f"✅ Created new session for event {google_event_id}")
        return session

    def import_patient_with_sessions(
        self, therapist_email: str, patient_data: PatientImportData, now: Optional[datetime] = None
    ) -> ImportPatientResponse:
        """Upsert one patient (by email + therapist) and all of their sessions"""
        now = now or self.clock()
        logger.info(
            f"📥 Importing patient {patient_data.name} for {therapist_email} "
            f"({len(patient_data.sessions)} sessions)"
        )

        try:
            therapist = self._get_therapist(therapist_email)

            patient_fields = {
                "name": patient_data.name,
                "phone": patient_data.phone,
                "session_price": patient_data.sessionPrice,
                "therapy_start_date": patient_data.therapyStartDate,
                "billing_start_date": patient_data.lvNotasBillingStartDate,
            }
            patient = self.repo.find_patient_by_email(self.db, therapist.id, patient_data.email)
            patient_created = patient is None
            if patient:
                self.repo.update_patient(patient, **patient_fields)
                self.db.flush()
                logger.info(f"✅ Updated existing patient: {patient.id}")
            else:
                patient = self.repo.create_patient(
                    self.db, therapist.id, email=patient_data.email, **patient_fields
                )
                logger.info(f"✅ Created new patient: {patient.id}")

            sessions = [
                self._upsert_session(therapist.id, patient, s.googleEventId, s.date, s.status)
                for s in patient_data.sessions
            ]
            seed_payment_status(sessions, patient.billing_start_date, now)

            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"❌ Import failed for patient {patient_data.email} - rolled back")
            raise

        logger.info(f"🎉 Import completed: patient {patient.id}, {len(sessions)} sessions")
        return ImportPatientResponse(
            message="Patient and sessions imported successfully",
            patientId=str(patient.id),
            sessionIds=[str(s.id) for s in sessions],
            stats=ImportStats(sessionsImported=len(sessions), patientCreated=patient_created),
        )

    def import_events(
        self,
        therapist_email: str,
        events: list[Union[CalendarEvent, dict[str, Any]]],
        billing_start_dates: Optional[dict[str, date]] = None,
        default_billing_start_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> ImportEventsResponse:
        """
        Import already-fetched calendar events.

        Unlike webhook processing, unknown patients with an attendee email are
        created, and events with no resolvable patient are still imported with
        an unmatched label.
        """
        now = now or self.clock()
        billing_start_dates = billing_start_dates or {}
        skipped: list[SkippedEvent] = []
        session_ids: list[int] = []
        unmatched_ids: list[int] = []
        created_patient_ids: list[int] = []
        sessions_by_patient: dict[int, list[TherapySession]] = defaultdict(list)
        patients: dict[int, Patient] = {}

        try:
            therapist = self._get_therapist(therapist_email)
            therapist_email_lower = therapist.email.lower()

            for raw_event in events:
                try:
                    event = normalize_event(raw_event)
                except InvalidEvent as e:
                    event_id = raw_event.id if isinstance(raw_event, CalendarEvent) else raw_event.get("id")
                    skipped.append(SkippedEvent(eventId=event_id or "<unknown>", reason=str(e)))
                    continue

                existing = self.repo.find_session_by_event_id(self.db, event.event_id)
                if event.is_cancelled and existing is None:
                    skipped.append(SkippedEvent(eventId=event.event_id, reason="Cancelled event with no session"))
                    continue

                patient = self.resolver.resolve(self.db, event, therapist.id)
                if patient is None and existing is not None and existing.patient_id is not None:
                    # Event id is the join key, an edited title does not detach the patient
                    patient = self.repo.get_patient(self.db, existing.patient_id)
                patient_email = extract_patient_email(event)
                patient_name = extract_patient_name(event.summary)

                if patient is None and patient_email and patient_email != therapist_email_lower:
                    patient = self.repo.create_patient(
                        self.db,
                        therapist.id,
                        name=patient_name or patient_email.split("@")[0],
                        email=patient_email,
                        billing_start_date=billing_start_dates.get(patient_email, default_billing_start_date),
                    )
                    created_patient_ids.append(patient.id)
                    logger.info(f"✅ Created patient {patient.id} from event {event.event_id}")

                unmatched_label = None
                if patient is None:
                    unmatched_label = patient_name or event.summary or UNMATCHED_PATIENT_LABEL
                elif patient.email and patient.email.lower() in billing_start_dates:
                    patient.billing_start_date = billing_start_dates[patient.email.lower()]

                status = SESSION_CANCELLED if event.is_cancelled else SESSION_SCHEDULED
                session = self._upsert_session(
                    therapist.id, patient, event.event_id, event.session_date, status, unmatched_label
                )
                session_ids.append(session.id)
                if patient is None:
                    unmatched_ids.append(session.id)
                else:
                    patients[patient.id] = patient
                    sessions_by_patient[patient.id].append(session)

            for patient_id, patient_sessions in sessions_by_patient.items():
                cutoff = patients[patient_id].billing_start_date or default_billing_start_date
                seed_payment_status(patient_sessions, cutoff, now)

            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"❌ Event import failed for {therapist_email} - rolled back")
            raise

        logger.info(
            f"🎉 Imported {len(session_ids)} sessions ({len(unmatched_ids)} unmatched, "
            f"{len(skipped)} skipped, {len(created_patient_ids)} new patients)"
        )
        return ImportEventsResponse(
            message="Calendar events imported successfully",
            sessionIds=[str(i) for i in session_ids],
            createdPatientIds=[str(i) for i in created_patient_ids],
            unmatchedSessionIds=[str(i) for i in unmatched_ids],
            skipped=skipped,
        )
