"""Shared fixtures: in-memory SQLite, a fake calendar client and an API client with overrides"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SAFE_PROXY_KEY", "test-proxy-key")
os.environ.setdefault("GOOGLE_CALENDAR_ID", "clinic-calendar@group.calendar.google.com")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import config  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.dependencies import get_calendar_client, get_session_factory  # noqa: E402
from app.domain.calendar_sync.errors import UpstreamUnavailable  # noqa: E402
from app.domain.calendar_sync.schemas import CalendarEvent, WatchChannelResponse  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Patient, Therapist  # noqa: E402
from app.rate_limiter import rate_limit_api  # noqa: E402

CALENDAR_ID = config.GOOGLE_CALENDAR_ID
API_KEY = config.SAFE_PROXY_KEY
THERAPIST_EMAIL = "therapist@lvnotas.test"


class FakeCalendarClient:
    """Stands in for GoogleCalendarClient; records every call"""

    def __init__(self):
        self.recent_events: list[CalendarEvent] = []
        self.range_events: list[CalendarEvent] = []
        self.error = None
        self.stop_errors: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self.watch_count = 0

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    async def get_recent_events(self, calendar_id, window_seconds=30, max_results=10, now=None):
        self.calls.append(("get_recent_events", calendar_id, window_seconds, max_results))
        self._maybe_fail()
        return list(self.recent_events)

    async def list_events_in_range(self, calendar_id, start, end, access_token=None, max_results=2500):
        self.calls.append(("list_events_in_range", calendar_id, start, end, access_token))
        self._maybe_fail()
        return list(self.range_events)

    async def watch_events(self, calendar_id, address, channel_id, expiration, token=None):
        self.calls.append(("watch_events", calendar_id, address, channel_id, expiration, token))
        self._maybe_fail()
        self.watch_count += 1
        return WatchChannelResponse(
            id=f"{channel_id}-{self.watch_count}",
            resourceId=f"resource-{self.watch_count}",
            expiration=str(int(datetime(2030, 1, 8, tzinfo=timezone.utc).timestamp() * 1000)),
        )

    async def stop_channel(self, channel_id, resource_id):
        self.calls.append(("stop_channel", channel_id, resource_id))
        if channel_id in self.stop_errors:
            raise self.stop_errors[channel_id]


def build_event(
    event_id: str = "evt1",
    start: str = "2024-06-10T13:00:00Z",
    summary: str = "Sessão - Maria Silva",
    status: str = "confirmed",
    creator: str = None,
    attendees: list = None,
    all_day: bool = False,
    updated: str = "2024-06-10T12:00:00.000Z",
) -> dict:
    event = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "start": {"date": start} if all_day else {"dateTime": start},
        "updated": updated,
        "organizer": {"email": CALENDAR_ID},
    }
    if creator:
        event["creator"] = {"email": creator}
    if attendees is not None:
        event["attendees"] = attendees
    return event


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def therapist(db):
    therapist = Therapist(name="Dra. Ana", email=THERAPIST_EMAIL, google_calendar_id=CALENDAR_ID)
    db.add(therapist)
    db.commit()
    db.refresh(therapist)
    return therapist


@pytest.fixture
def patient(db, therapist):
    patient = Patient(
        therapist_id=therapist.id,
        name="Maria Silva",
        email="pat@x.com",
        session_price=15000,
        billing_start_date=date(2024, 6, 1),
    )
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def fake_calendar():
    return FakeCalendarClient()


@pytest.fixture
def event_factory():
    return build_event


@pytest.fixture
def api_client(session_factory, fake_calendar):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_calendar_client] = lambda: fake_calendar
    app.dependency_overrides[rate_limit_api] = lambda: None

    client = TestClient(app)
    client.headers.update({"X-API-Key": API_KEY})
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def upstream_error():
    return UpstreamUnavailable("Google Calendar returned 503: backend error", status_code=503)
