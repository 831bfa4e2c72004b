"""Calendar sync schemas - Google Calendar payloads, pipeline results and import requests"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import normalize_email, parse_iso_date, parse_iso_datetime, validate_br_phone

EventType = Literal["new", "update", "cancel"]
SessionStatus = Literal["agendada", "compareceu", "cancelada"]


# ============================================================================
# GOOGLE CALENDAR PAYLOADS
# ============================================================================


class EventDateTime(BaseModel):
    """Either a precise instant (dateTime) or an all-day date, never both"""

    model_config = ConfigDict(extra="allow")

    dateTime: Optional[str] = None
    date: Optional[str] = None
    timeZone: Optional[str] = None


class EventPerson(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    displayName: Optional[str] = None


class EventAttendee(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    email: Optional[str] = None
    displayName: Optional[str] = None
    responseStatus: Optional[str] = None
    organizer: Optional[bool] = None
    is_self: Optional[bool] = Field(default=None, alias="self")


class CalendarEvent(BaseModel):
    """A Google Calendar event as delivered by events.list (webhook, bulk list or import)"""

    model_config = ConfigDict(extra="allow")

    id: str
    status: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[EventDateTime] = None
    end: Optional[EventDateTime] = None
    attendees: list[EventAttendee] = Field(default_factory=list)
    organizer: Optional[EventPerson] = None
    creator: Optional[EventPerson] = None
    updated: Optional[str] = None

    @field_validator("attendees", mode="before")
    @classmethod
    def default_attendees(cls, v):
        return v or []


class EventsListResponse(BaseModel):
    """events.list response; `items` is the only field we require"""

    model_config = ConfigDict(extra="allow")

    items: list[CalendarEvent]
    nextPageToken: Optional[str] = None


class WatchChannelResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    resourceId: str
    expiration: Optional[str] = None  # Milliseconds since epoch, as a string


# ============================================================================
# PIPELINE
# ============================================================================


class NormalizedAttendee(BaseModel):
    email: str
    response_status: Optional[str] = None


class NormalizedEvent(BaseModel):
    """Canonical session candidate extracted from a CalendarEvent"""

    event_id: str
    status: str
    session_date: datetime  # Naive UTC
    is_all_day: bool = False
    summary: str = ""
    creator_email: Optional[str] = None
    organizer_email: Optional[str] = None
    attendees: list[NormalizedAttendee] = Field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


class CalendarEventProcessingResult(BaseModel):
    """Classification produced by the session matcher for one event"""

    event_type: EventType
    session_id: Optional[int] = None
    therapist_id: Optional[int] = None
    patient_id: Optional[int] = None
    error: Optional[str] = None


class NotificationOutcome(BaseModel):
    """What the webhook pipeline did with one delivery (for logs and tests)"""

    processed: bool
    event_id: Optional[str] = None
    event_type: Optional[EventType] = None
    session_id: Optional[int] = None
    reason: Optional[str] = None


# ============================================================================
# BULK IMPORT
# ============================================================================


class SessionImportData(BaseModel):
    date: datetime
    googleEventId: str
    status: SessionStatus = "agendada"

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        parsed = parse_iso_datetime(v)
        if parsed is None:
            raise ValueError("Invalid session date")
        return parsed


class PatientImportData(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    sessionPrice: int = Field(ge=0)  # In cents
    therapyStartDate: Optional[date] = None
    lvNotasBillingStartDate: date
    sessions: list[SessionImportData] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v):
        email = normalize_email(v)
        if not email:
            raise ValueError("Patient email is required")
        return email

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_br_phone(v)
        return v

    @field_validator("therapyStartDate", "lvNotasBillingStartDate", mode="before")
    @classmethod
    def parse_dates(cls, v):
        if v in (None, ""):
            return None
        parsed = parse_iso_date(v)
        if parsed is None:
            raise ValueError("Invalid date")
        return parsed


class ImportPatientRequest(BaseModel):
    therapistEmail: str
    patientData: PatientImportData


class ImportStats(BaseModel):
    sessionsImported: int
    patientCreated: bool


class ImportPatientResponse(BaseModel):
    message: str
    patientId: str
    sessionIds: list[str]
    stats: ImportStats


class SkippedEvent(BaseModel):
    eventId: str
    reason: str


class ImportEventsRequest(BaseModel):
    """Event-list import: raw calendar events plus billing cutoffs keyed by patient email"""

    therapistEmail: str
    events: list[CalendarEvent]
    billingStartDates: dict[str, date] = Field(default_factory=dict)
    defaultBillingStartDate: Optional[date] = None

    @field_validator("billingStartDates")
    @classmethod
    def lowercase_keys(cls, v):
        return {normalize_email(k): d for k, d in v.items() if normalize_email(k)}


class ImportEventsResponse(BaseModel):
    message: str
    sessionIds: list[str]
    createdPatientIds: list[str]
    unmatchedSessionIds: list[str]
    skipped: list[SkippedEvent]


# ============================================================================
# CALENDAR-ONLY VIEWS
# ============================================================================


class CalendarSession(BaseModel):
    id: str  # Google Calendar event ID
    patientId: Optional[int] = None
    patientName: str
    patientEmail: Optional[str] = None
    date: datetime
    status: SessionStatus
    googleEventId: str
    isFromCalendar: bool = True
    paymentStatus: Optional[str] = None


class PatientWithSessions(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    sessionPrice: int = 0
    billingStartDate: Optional[date] = None
    sessions: list[CalendarSession] = Field(default_factory=list)


class CheckInRequest(BaseModel):
    patientId: int
    sessionId: int


class BillingStartDateUpdate(BaseModel):
    startDate: date


# ============================================================================
# WATCH CHANNELS
# ============================================================================


class WebhookChannelResponse(BaseModel):
    channelId: str
    resourceId: str
    expiration: Optional[datetime] = None


class WebhookSetupResponse(BaseModel):
    message: str
    result: WebhookChannelResponse


class WebhookStopResponse(BaseModel):
    message: str
    stopped: int
