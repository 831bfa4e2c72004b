"""
Tests for webhook-driven calendar sync
"""

import threading
from datetime import datetime

import pytest

from app import config
from app.domain.calendar_sync.errors import UpstreamUnavailable
from app.domain.calendar_sync.schemas import CalendarEvent
from app.domain.calendar_sync.service import CalendarSyncService, handle_calendar_notification
from app.models import CalendarEventLog, TherapySession
from conftest import CALENDAR_ID

WEBHOOK_HEADERS = {
    "X-Goog-Channel-ID": "lv-calendar-webhook-1",
    "X-Goog-Resource-ID": "resource-1",
}


@pytest.fixture
def sync_service(fake_calendar, session_factory):
    return CalendarSyncService(fake_calendar, session_factory, CALENDAR_ID)


class TestCalendarSyncService:
    async def test_processes_only_the_most_recent_event(
        self, db, patient, fake_calendar, sync_service, event_factory
    ):
        fake_calendar.recent_events = [
            CalendarEvent.model_validate(event_factory("evt-latest", creator="pat@x.com")),
            CalendarEvent.model_validate(event_factory("evt-older", creator="pat@x.com")),
        ]

        outcome = await sync_service.process_notification()

        assert outcome.processed is True
        assert outcome.event_id == "evt-latest"
        assert outcome.event_type == "new"
        assert [s.google_calendar_event_id for s in db.query(TherapySession)] == ["evt-latest"]

    async def test_event_is_processed_off_the_event_loop_thread(
        self, fake_calendar, sync_service, event_factory, monkeypatch
    ):
        fake_calendar.recent_events = [CalendarEvent.model_validate(event_factory("evt-latest"))]
        threads = []
        monkeypatch.setattr(sync_service, "process_event", lambda event: threads.append(threading.get_ident()))

        await sync_service.process_notification()

        assert threads and threads[0] != threading.get_ident()

    async def test_no_recent_events(self, fake_calendar, sync_service):
        outcome = await sync_service.process_notification()

        assert outcome.processed is False
        assert outcome.reason == "No recent events"

    def test_invalid_event_is_reported_not_raised(self, therapist, sync_service, event_factory):
        raw = event_factory()
        del raw["start"]

        outcome = sync_service.process_event(raw)

        assert outcome.processed is False
        assert outcome.event_id == "evt1"

    def test_unresolved_patient_is_reported(self, therapist, sync_service, event_factory):
        outcome = sync_service.process_event(event_factory(summary="Sessão - Ninguém"))

        assert outcome.processed is False
        assert outcome.reason == "Patient not found"

    async def test_handler_skips_sync_state(self, fake_calendar, sync_service):
        assert await handle_calendar_notification(sync_service, "chan", "sync") is None
        assert fake_calendar.calls == []

    async def test_handler_ignores_other_states(self, fake_calendar, sync_service):
        assert await handle_calendar_notification(sync_service, "chan", "not_exists") is None
        assert fake_calendar.calls == []

    async def test_handler_logs_upstream_failures(self, fake_calendar, sync_service, upstream_error, caplog):
        fake_calendar.error = upstream_error

        assert await handle_calendar_notification(sync_service, "chan", "exists") is None
        assert "Error processing calendar notification" in caplog.text


class TestCalendarWebhookRoute:
    def test_sync_notification_is_acknowledged_and_ignored(self, api_client, fake_calendar):
        response = api_client.post(
            "/api/calendar-webhook", headers={**WEBHOOK_HEADERS, "X-Goog-Resource-State": "sync"}
        )

        assert response.status_code == 200
        assert response.text == "OK"
        assert fake_calendar.calls == []

    def test_exists_notification_creates_session(self, api_client, db, patient, fake_calendar, event_factory):
        fake_calendar.recent_events = [
            CalendarEvent.model_validate(
                event_factory("evt1", start="2024-06-10T13:00:00Z", summary="Sessão - Maria", creator="pat@x.com")
            )
        ]

        response = api_client.post(
            "/api/calendar-webhook", headers={**WEBHOOK_HEADERS, "X-Goog-Resource-State": "exists"}
        )

        assert response.status_code == 200
        assert response.text == "OK"
        db.expire_all()
        session = db.query(TherapySession).one()
        assert session.google_calendar_event_id == "evt1"
        assert session.patient_id == patient.id
        assert session.date == datetime(2024, 6, 10, 13, 0)
        assert session.status == "agendada"
        assert db.query(CalendarEventLog).one().event_type == "new"

    def test_failures_still_return_ok(self, api_client, therapist, fake_calendar):
        fake_calendar.error = UpstreamUnavailable("Google Calendar request failed: timeout")

        response = api_client.post(
            "/api/calendar-webhook", headers={**WEBHOOK_HEADERS, "X-Goog-Resource-State": "exists"}
        )

        assert response.status_code == 200
        assert response.text == "OK"

    def test_does_not_require_api_key(self, api_client, fake_calendar):
        response = api_client.post(
            "/api/calendar-webhook",
            headers={**WEBHOOK_HEADERS, "X-Goog-Resource-State": "sync", "X-API-Key": ""},
        )

        assert response.status_code == 200

    def test_wrong_channel_token_is_acknowledged_but_not_processed(
        self, api_client, patient, fake_calendar, monkeypatch, event_factory
    ):
        monkeypatch.setattr(config, "GOOGLE_WEBHOOK_TOKEN", "expected-token")
        fake_calendar.recent_events = [CalendarEvent.model_validate(event_factory(creator="pat@x.com"))]

        response = api_client.post(
            "/api/calendar-webhook",
            headers={**WEBHOOK_HEADERS, "X-Goog-Resource-State": "exists", "X-Goog-Channel-Token": "wrong"},
        )

        assert response.status_code == 200
        assert fake_calendar.calls == []
