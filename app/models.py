from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Session lifecycle statuses
SESSION_SCHEDULED = "agendada"
SESSION_ATTENDED = "compareceu"
SESSION_CANCELLED = "cancelada"

# Payment statuses seeded by the bulk import
PAYMENT_NOT_BILLED = "not_billed"
PAYMENT_PENDING = "pending"


class Therapist(Base):
    __tablename__ = "therapists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    google_calendar_id = Column(String(500), nullable=True, index=True)  # Calendar bound to webhook
    billing_cycle = Column(String(50), nullable=True)  # monthly, per_session
    created_at = Column(DateTime, server_default=func.now())

    patients = relationship("Patient", back_populates="therapist")
    sessions = relationship("TherapySession", back_populates="therapist")


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (UniqueConstraint("therapist_id", "email", name="uq_patients_therapist_email"),)

    id = Column(Integer, primary_key=True, index=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    session_price = Column(Integer, nullable=True)  # In cents
    therapy_start_date = Column(Date, nullable=True)
    billing_start_date = Column(Date, nullable=True)  # LV Notas-managed billing starts here
    created_at = Column(DateTime, server_default=func.now())

    therapist = relationship("Therapist", back_populates="patients")
    sessions = relationship("TherapySession", back_populates="patient")


class TherapySession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(DateTime, nullable=False)  # Naive UTC
    # Join key back to Google Calendar; at most one session per event
    google_calendar_event_id = Column(String(500), unique=True, nullable=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SESSION_SCHEDULED)  # agendada, compareceu, cancelada
    payment_status = Column(String(30), nullable=True)  # not_billed, pending, paid
    session_price = Column(Integer, nullable=True)  # In cents, copied from patient at insert
    unmatched_label = Column(String(255), nullable=True)  # Imported events with no patient
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="sessions")
    therapist = relationship("Therapist", back_populates="sessions")


class CalendarEventLog(Base):
    """Append-only log of processed calendar notifications"""

    __tablename__ = "calendar_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(20), nullable=False)  # new, update, cancel
    google_event_id = Column(String(500), nullable=False, index=True)
    session_date = Column(DateTime, nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class CalendarWebhook(Base):
    __tablename__ = "calendar_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    channel_id = Column(String(255), unique=True, nullable=False)
    resource_id = Column(String(255), nullable=True)
    expiration = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class CheckIn(Base):
    __tablename__ = "check_ins"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    session_date = Column(DateTime, nullable=True)
    created_by = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=SESSION_ATTENDED)
    created_at = Column(DateTime, server_default=func.now())
