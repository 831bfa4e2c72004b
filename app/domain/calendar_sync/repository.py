"""Calendar sync repository - Database operations for therapists, patients and sessions

Methods never commit; the caller owns the transaction so that a session
mutation and its audit-log row succeed or fail together.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import (
    SESSION_SCHEDULED,
    CalendarEventLog,
    CalendarWebhook,
    CheckIn,
    Patient,
    Therapist,
    TherapySession,
)


class SessionSyncRepository:
    """Repository for calendar sync database operations"""

    # Therapists
    @staticmethod
    def get_therapist_by_calendar(db: Session, calendar_id: str) -> Optional[Therapist]:
        """First therapist bound to a Google Calendar ID"""
        if not calendar_id:
            return None
        return (
            db.query(Therapist)
            .filter(Therapist.google_calendar_id == calendar_id)
            .order_by(Therapist.id)
            .first()
        )

    @staticmethod
    def get_therapist_by_email(db: Session, email: str) -> Optional[Therapist]:
        return db.query(Therapist).filter(func.lower(Therapist.email) == email.strip().lower()).first()

    # Patients
    @staticmethod
    def get_patient(db: Session, patient_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def find_patient_by_email(db: Session, therapist_id: int, email: str) -> Optional[Patient]:
        """Exact (case-insensitive) email match within one therapist's patients"""
        return (
            db.query(Patient)
            .filter(Patient.therapist_id == therapist_id, func.lower(Patient.email) == email.lower())
            .order_by(Patient.id)
            .first()
        )

    @staticmethod
    def find_patient_by_name(db: Session, therapist_id: int, name: str) -> Optional[Patient]:
        """Case-insensitive exact name match; lowest id wins on duplicates"""
        return (
            db.query(Patient)
            .filter(
                Patient.therapist_id == therapist_id,
                func.lower(func.trim(Patient.name)) == name.strip().lower(),
            )
            .order_by(Patient.id)
            .first()
        )

    @staticmethod
    def list_patients(db: Session, therapist_id: int) -> list[Patient]:
        return db.query(Patient).filter(Patient.therapist_id == therapist_id).order_by(Patient.name).all()

    @staticmethod
    def earliest_billing_start_date(db: Session, therapist_id: int) -> Optional[date]:
        return (
            db.query(func.min(Patient.billing_start_date))
            .filter(Patient.therapist_id == therapist_id, Patient.billing_start_date.isnot(None))
            .scalar()
        )

    @staticmethod
    def create_patient(db: Session, therapist_id: int, **patient_data) -> Patient:
        patient = Patient(therapist_id=therapist_id, **patient_data)
        db.add(patient)
        db.flush()
        return patient

    @staticmethod
    def update_patient(patient: Patient, **updates) -> Patient:
        for key, value in updates.items():
            if hasattr(patient, key):
                setattr(patient, key, value)
        return patient

    # Sessions
    @staticmethod
    def get_session(db: Session, session_id: int) -> Optional[TherapySession]:
        return db.query(TherapySession).filter(TherapySession.id == session_id).first()

    @staticmethod
    def find_session_by_event_id(db: Session, google_event_id: str) -> Optional[TherapySession]:
        return (
            db.query(TherapySession)
            .filter(TherapySession.google_calendar_event_id == google_event_id)
            .first()
        )

    @staticmethod
    def create_session(db: Session, **session_data) -> TherapySession:
        session = TherapySession(**session_data)
        db.add(session)
        db.flush()
        return session

    @staticmethod
    def past_scheduled_sessions(db: Session, now: datetime, therapist_id: Optional[int] = None):
        query = db.query(TherapySession).filter(
            TherapySession.status == SESSION_SCHEDULED, TherapySession.date < now
        )
        if therapist_id is not None:
            query = query.filter(TherapySession.therapist_id == therapist_id)
        return query.all()

    # Audit log
    @staticmethod
    def log_calendar_event(
        db: Session,
        event_type: str,
        google_event_id: str,
        session_date: Optional[datetime],
        email: Optional[str],
    ) -> CalendarEventLog:
        entry = CalendarEventLog(
            event_type=event_type,
            google_event_id=google_event_id,
            session_date=session_date,
            email=email,
        )
        db.add(entry)
        return entry

    # Check-ins
    @staticmethod
    def create_check_in(db: Session, **check_in_data) -> CheckIn:
        check_in = CheckIn(**check_in_data)
        db.add(check_in)
        return check_in

    # Watch channels
    @staticmethod
    def list_channels(db: Session) -> list[CalendarWebhook]:
        return db.query(CalendarWebhook).order_by(CalendarWebhook.id).all()

    @staticmethod
    def add_channel(
        db: Session, channel_id: str, resource_id: str, expiration: Optional[datetime]
    ) -> CalendarWebhook:
        channel = CalendarWebhook(channel_id=channel_id, resource_id=resource_id, expiration=expiration)
        db.add(channel)
        return channel

    @staticmethod
    def delete_channel(db: Session, channel: CalendarWebhook) -> None:
        db.delete(channel)
