"""
Tests for calendar-only session views, check-in and auto check-in
"""

from datetime import date, datetime

import pytest

from app.domain.calendar_sync.calendar_sessions import CalendarSessionsService
from app.domain.calendar_sync.errors import RecordNotFound
from app.domain.calendar_sync.schemas import CalendarEvent
from app.models import CheckIn, Patient, TherapySession
from app.services.status_automation import apply_auto_check_in
from conftest import CALENDAR_ID, THERAPIST_EMAIL

NOW = datetime(2024, 6, 15, 12, 0)


@pytest.fixture
def calendar_events(event_factory):
    return [
        CalendarEvent.model_validate(e)
        for e in [
            event_factory("evt-before-billing", start="2024-05-20T13:00:00Z", creator="pat@x.com"),
            event_factory("evt-past", start="2024-06-03T13:00:00Z", creator="pat@x.com"),
            event_factory("evt-cancelled", start="2024-06-05T13:00:00Z", status="cancelled", creator="pat@x.com"),
            event_factory("evt-future", start="2024-06-20T13:00:00Z", creator="pat@x.com"),
            event_factory("evt-other", start="2024-06-04T13:00:00Z", summary="Sessão - Joana Lima"),
        ]
    ]


@pytest.fixture
def sessions_service(db, fake_calendar, calendar_events):
    fake_calendar.range_events = calendar_events
    return CalendarSessionsService(db, fake_calendar, CALENDAR_ID, clock=lambda: NOW)


class TestCalendarSessionsService:
    async def test_patient_sessions_are_filtered_and_converted(self, patient, sessions_service, fake_calendar):
        sessions = await sessions_service.get_patient_sessions(patient.id)

        statuses = {s.googleEventId: s.status for s in sessions}
        assert statuses == {
            "evt-past": "compareceu",
            "evt-cancelled": "cancelada",
            "evt-future": "agendada",
        }
        _, calendar_id, start, end, _ = fake_calendar.calls[0]
        assert calendar_id == CALENDAR_ID
        assert start == datetime(2024, 6, 1)
        assert end > NOW

    async def test_patient_without_billing_start_has_no_sessions(self, db, patient, sessions_service, fake_calendar):
        patient.billing_start_date = None
        db.commit()

        assert await sessions_service.get_patient_sessions(patient.id) == []
        assert fake_calendar.calls == []

    async def test_unknown_patient(self, therapist, sessions_service):
        with pytest.raises(RecordNotFound):
            await sessions_service.get_patient_sessions(999)

    async def test_patients_with_sessions_respects_billing_start(self, db, therapist, patient, sessions_service):
        db.add(Patient(therapist_id=therapist.id, name="Joana Lima", email="joana@x.com"))
        db.commit()

        result = await sessions_service.get_patients_with_sessions(THERAPIST_EMAIL)

        by_name = {p.name: p for p in result}
        assert [s.googleEventId for s in by_name["Maria Silva"].sessions] == [
            "evt-past",
            "evt-cancelled",
            "evt-future",
        ]
        assert by_name["Joana Lima"].sessions == []

    async def test_window_defaults_to_earliest_billing_start(self, patient, sessions_service, fake_calendar):
        await sessions_service.get_patients_with_sessions(THERAPIST_EMAIL)

        assert fake_calendar.calls[0][2] == datetime(2024, 6, 1)

    async def test_sessions_with_payments(self, patient, sessions_service):
        without = await sessions_service.get_sessions_with_payments(THERAPIST_EMAIL)
        assert {s.googleEventId: s.status for s in without}["evt-past"] == "agendada"

        sessions = await sessions_service.get_sessions_with_payments(THERAPIST_EMAIL, auto_check_in=True)

        assert [s.googleEventId for s in sessions] == ["evt-future", "evt-cancelled", "evt-past"]
        payments = {s.googleEventId: (s.status, s.paymentStatus) for s in sessions}
        assert payments["evt-past"] == ("compareceu", "pending")
        assert payments["evt-future"] == ("agendada", "not_billed")
        assert payments["evt-cancelled"] == ("cancelada", "not_billed")

    def test_update_billing_start_date(self, db, patient, sessions_service):
        sessions_service.update_billing_start_date(patient.id, date(2024, 7, 1))

        db.expire_all()
        assert db.get(Patient, patient.id).billing_start_date == date(2024, 7, 1)


class TestAutoCheckIn:
    def test_past_scheduled_sessions_become_attended(self, db, therapist, patient):
        past = TherapySession(date=datetime(2024, 6, 3, 13), therapist_id=therapist.id, patient_id=patient.id)
        cancelled = TherapySession(
            date=datetime(2024, 6, 4, 13), therapist_id=therapist.id, patient_id=patient.id, status="cancelada"
        )
        future = TherapySession(date=datetime(2024, 6, 20, 13), therapist_id=therapist.id, patient_id=patient.id)
        db.add_all([past, cancelled, future])
        db.commit()

        summary = apply_auto_check_in(db, now=NOW)

        assert summary["checked_in"] == 1
        assert summary["session_ids"] == [past.id]
        db.expire_all()
        assert [s.status for s in (past, cancelled, future)] == ["compareceu", "cancelada", "agendada"]


class TestCheckInRoutes:
    def test_check_in_records_row_and_updates_status(self, api_client, db, therapist, patient):
        session = TherapySession(date=datetime(2024, 6, 3, 13), therapist_id=therapist.id, patient_id=patient.id)
        db.add(session)
        db.commit()

        response = api_client.post("/api/checkin", json={"patientId": patient.id, "sessionId": session.id})

        assert response.status_code == 200
        assert response.json()["message"] == "Check-in successful"
        db.expire_all()
        assert db.get(TherapySession, session.id).status == "compareceu"
        check_in = db.query(CheckIn).one()
        assert (check_in.created_by, check_in.status) == ("system", "compareceu")

    def test_check_in_unknown_session(self, api_client, patient):
        response = api_client.post("/api/checkin", json={"patientId": patient.id, "sessionId": 42})

        assert response.status_code == 404
        assert response.json() == {"error": "Patient or session not found"}

    def test_auto_check_in_route(self, api_client, db, therapist, patient):
        db.add(TherapySession(date=datetime(2024, 6, 3, 13), therapist_id=therapist.id, patient_id=patient.id))
        db.commit()

        response = api_client.post("/api/sessions/auto-check-in", json={"now": "2024-06-15T12:00:00Z"})

        assert response.status_code == 200
        assert response.json()["checked_in"] == 1

    def test_requires_api_key(self, api_client, patient):
        response = api_client.post(
            "/api/checkin", json={"patientId": patient.id, "sessionId": 1}, headers={"X-API-Key": "wrong"}
        )

        assert response.status_code == 401


class TestCalendarOnlyRoutes:
    def test_therapist_email_is_required(self, api_client):
        response = api_client.get("/api/calendar-only/patients")

        assert response.status_code == 400
        assert response.json() == {"error": "therapistEmail is required"}

    def test_lists_sessions_with_payments(self, api_client, patient, fake_calendar, calendar_events):
        fake_calendar.range_events = calendar_events

        response = api_client.get(
            "/api/calendar-only/sessions", params={"therapistEmail": THERAPIST_EMAIL, "autoCheckIn": "true"}
        )

        assert response.status_code == 200
        assert {s["googleEventId"] for s in response.json()} >= {"evt-past", "evt-future"}

    def test_upstream_failure_is_reported(self, api_client, patient, fake_calendar, upstream_error):
        fake_calendar.error = upstream_error

        response = api_client.get(f"/api/calendar-only/patients/{patient.id}")

        assert response.status_code == 502
        assert response.json()["error"] == "Failed to get patient sessions from calendar"
        assert "503" in response.json()["details"]

    def test_update_billing_start_date_route(self, api_client, patient):
        response = api_client.put(
            f"/api/calendar-only/patients/{patient.id}/billing-start-date", json={"startDate": "2024-07-01"}
        )

        assert response.status_code == 200
        assert response.json()["newStartDate"] == "2024-07-01"
