"""
Calendar-only session views
Builds session listings straight from Google Calendar, without reading the sessions table
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...cache import utcnow
from ...models import (
    PAYMENT_NOT_BILLED,
    PAYMENT_PENDING,
    SESSION_ATTENDED,
    SESSION_CANCELLED,
    SESSION_SCHEDULED,
    Patient,
)
from .errors import InvalidEvent, RecordNotFound, TherapistNotFound
from .normalizer import normalize_event
from .repository import SessionSyncRepository
from .resolver import PatientResolver, extract_patient_email, extract_patient_name
from .schemas import CalendarSession, NormalizedEvent, PatientWithSessions

logger = logging.getLogger(__name__)

LOOKAHEAD = timedelta(days=90)
DEFAULT_LOOKBACK = timedelta(days=180)


def _as_datetime(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


class CalendarSessionsService:
    """Read-only view of a therapist's sessions as they exist in the calendar"""

    def __init__(
        self,
        db: Session,
        calendar_client,
        calendar_id: str,
        repo: Optional[SessionSyncRepository] = None,
        resolver: Optional[PatientResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.calendar = calendar_client
        self.calendar_id = calendar_id
        self.repo = repo or SessionSyncRepository()
        self.resolver = resolver or PatientResolver(self.repo)
        self.clock = clock

    @staticmethod
    def to_calendar_session(
        event: NormalizedEvent, patient: Optional[Patient], now: datetime, auto_check_in: bool = True
    ) -> CalendarSession:
        """Cancelled events are cancelada; past events count as attended when auto check-in applies"""
        if event.is_cancelled:
            status = SESSION_CANCELLED
        elif auto_check_in and event.session_date < now:
            status = SESSION_ATTENDED
        else:
            status = SESSION_SCHEDULED

        return CalendarSession(
            id=event.event_id,
            patientId=patient.id if patient else None,
            patientName=(patient.name if patient else None)
            or extract_patient_name(event.summary)
            or "Unknown Patient",
            patientEmail=(patient.email if patient else None) or extract_patient_email(event),
            date=event.session_date,
            status=status,
            googleEventId=event.event_id,
        )

    async def _load_events(
        self, start: datetime, end: datetime, access_token: Optional[str]
    ) -> list[NormalizedEvent]:
        raw_events = await self.calendar.list_events_in_range(
            self.calendar_id, start, end, access_token=access_token
        )
        events = []
        for raw_event in raw_events:
            try:
                events.append(normalize_event(raw_event))
            except InvalidEvent as e:
                logger.debug(f"Skipping calendar event: {e}")
        return events

    async def get_patient_sessions(
        self,
        patient_id: int,
        access_token: Optional[str] = None,
        now: Optional[datetime] = None,
        auto_check_in: bool = True,
    ) -> list[CalendarSession]:
        """Sessions of one patient from their billing start date to three months ahead"""
        now = now or self.clock()
        patient = self.repo.get_patient(self.db, patient_id)
        if not patient:
            raise RecordNotFound(f"Patient with ID {patient_id} not found")

        if not patient.billing_start_date:
            logger.info(f"Patient {patient.name} has no billing start date set")
            return []

        billing_start = _as_datetime(patient.billing_start_date)
        events = await self._load_events(billing_start, now + LOOKAHEAD, access_token)

        sessions = []
        for event in events:
            if event.session_date < billing_start:
                continue
            match = self.resolver.resolve(self.db, event, patient.therapist_id)
            if match and match.id == patient.id:
                sessions.append(self.to_calendar_session(event, match, now, auto_check_in))

        logger.info(f"Found {len(sessions)} calendar sessions for patient {patient.name}")
        return sorted(sessions, key=lambda s: s.date)

    async def get_patients_with_sessions(
        self,
        therapist_email: str,
        access_token: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
        auto_check_in: bool = True,
    ) -> list[PatientWithSessions]:
        """Every patient of the therapist with the calendar sessions resolved to them"""
        now = now or self.clock()
        therapist = self.repo.get_therapist_by_email(self.db, therapist_email)
        if not therapist:
            raise TherapistNotFound(f"Therapist not found: {therapist_email}")

        patients = self.repo.list_patients(self.db, therapist.id)
        earliest = self.repo.earliest_billing_start_date(self.db, therapist.id)
        window_start = start or (_as_datetime(earliest) if earliest else now - DEFAULT_LOOKBACK)
        window_end = end or now + LOOKAHEAD

        logger.info(f"Loading calendar events from {window_start.isoformat()} for {len(patients)} patients")
        events = await self._load_events(window_start, window_end, access_token)

        by_patient: dict[int, list[CalendarSession]] = {p.id: [] for p in patients}
        for event in events:
            match = self.resolver.resolve(self.db, event, therapist.id)
            if not match or match.id not in by_patient:
                continue
            if match.billing_start_date and event.session_date < _as_datetime(match.billing_start_date):
                continue
            if event.session_date < window_start or event.session_date > window_end:
                continue
            by_patient[match.id].append(self.to_calendar_session(event, match, now, auto_check_in))

        result = []
        for patient in patients:
            # Patients without a billing start date are listed with no sessions
            sessions = by_patient[patient.id] if patient.billing_start_date else []
            result.append(
                PatientWithSessions(
                    id=patient.id,
                    name=patient.name,
                    email=patient.email,
                    phone=patient.phone,
                    sessionPrice=patient.session_price or 0,
                    billingStartDate=patient.billing_start_date,
                    sessions=sorted(sessions, key=lambda s: s.date),
                )
            )

        logger.info(f"Processed {len(result)} patients with calendar sessions")
        return result

    async def get_sessions_with_payments(
        self,
        therapist_email: str,
        access_token: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        auto_check_in: bool = False,
        now: Optional[datetime] = None,
    ) -> list[CalendarSession]:
        """Flattened session list, newest first, with a derived payment status"""
        now = now or self.clock()
        patients = await self.get_patients_with_sessions(
            therapist_email, access_token, start, end, now=now, auto_check_in=auto_check_in
        )

        sessions = []
        for patient in patients:
            for session in patient.sessions:
                session.paymentStatus = PAYMENT_PENDING if session.status == SESSION_ATTENDED else PAYMENT_NOT_BILLED
                sessions.append(session)

        return sorted(sessions, key=lambda s: s.date, reverse=True)

    def update_billing_start_date(self, patient_id: int, billing_start_date: date) -> Patient:
        patient = self.repo.get_patient(self.db, patient_id)
        if not patient:
            raise RecordNotFound(f"Patient with ID {patient_id} not found")

        try:
            self.repo.update_patient(patient, billing_start_date=billing_start_date)
            self.db.commit()
            self.db.refresh(patient)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✅ Billing start date for patient {patient.id} set to {billing_start_date}")
        return patient
