"""
Tests for the session matcher and the reconciliation applier
"""

from datetime import datetime

import pytest

from app.domain.calendar_sync.applier import ReconciliationApplier
from app.domain.calendar_sync.matcher import PATIENT_NOT_FOUND, THERAPIST_NOT_FOUND, SessionMatcher
from app.domain.calendar_sync.normalizer import normalize_event
from app.domain.calendar_sync.schemas import CalendarEventProcessingResult
from app.models import CalendarEventLog, TherapySession
from conftest import CALENDAR_ID


@pytest.fixture
def matcher():
    return SessionMatcher()


@pytest.fixture
def applier():
    return ReconciliationApplier()


def reconcile(db, matcher, applier, raw_event):
    event = normalize_event(raw_event)
    result = matcher.resolve_and_match(db, event, CALENDAR_ID)
    return result, applier.apply(db, result, event)


class TestSessionMatcher:
    def test_unknown_calendar_reports_therapist_not_found(self, db, matcher, event_factory):
        event = normalize_event(event_factory(creator="pat@x.com"))

        result = matcher.resolve_and_match(db, event, "someone-else@calendar")

        assert result.error == THERAPIST_NOT_FOUND
        assert result.event_type == "new"

    def test_unresolved_patient_reports_patient_not_found(self, db, therapist, matcher, event_factory):
        event = normalize_event(event_factory(summary="Sessão - Desconhecido"))

        result = matcher.resolve_and_match(db, event, CALENDAR_ID)

        assert result.error == PATIENT_NOT_FOUND
        assert result.therapist_id == therapist.id

    def test_classification(self, db, therapist, patient, matcher, event_factory):
        event = normalize_event(event_factory(creator="pat@x.com"))
        assert matcher.match(db, event, therapist.id, patient.id).event_type == "new"

        db.add(
            TherapySession(
                date=event.session_date,
                google_calendar_event_id="evt1",
                patient_id=patient.id,
                therapist_id=therapist.id,
            )
        )
        db.commit()

        assert matcher.match(db, event, therapist.id, patient.id).event_type == "update"

        cancelled = normalize_event(event_factory(status="cancelled", creator="pat@x.com"))
        result = matcher.match(db, cancelled, therapist.id, patient.id)
        assert result.event_type == "cancel"
        assert result.session_id is not None

    def test_matcher_never_writes(self, db, therapist, patient, matcher, event_factory):
        event = normalize_event(event_factory(creator="pat@x.com"))

        matcher.resolve_and_match(db, event, CALENDAR_ID)

        assert db.query(TherapySession).count() == 0
        assert db.query(CalendarEventLog).count() == 0


class TestReconciliationApplier:
    def test_new_event_creates_scheduled_session_and_log(self, db, patient, matcher, applier, event_factory):
        result, session = reconcile(db, matcher, applier, event_factory(creator="pat@x.com"))

        assert result.event_type == "new"
        assert session.status == "agendada"
        assert session.patient_id == patient.id
        assert session.date == datetime(2024, 6, 10, 13, 0)
        log = db.query(CalendarEventLog).one()
        assert (log.event_type, log.google_event_id, log.email) == ("new", "evt1", "pat@x.com")

    def test_replaying_an_event_is_idempotent(self, db, patient, matcher, applier, event_factory):
        raw = event_factory(creator="pat@x.com")

        _, first = reconcile(db, matcher, applier, raw)
        result, second = reconcile(db, matcher, applier, raw)

        assert result.event_type == "update"
        assert second.id == first.id
        assert db.query(TherapySession).count() == 1

    def test_update_moves_date_and_keeps_status(self, db, patient, matcher, applier, event_factory):
        _, session = reconcile(db, matcher, applier, event_factory(creator="pat@x.com"))
        session.status = "compareceu"
        db.commit()

        _, updated = reconcile(
            db, matcher, applier, event_factory(start="2024-06-11T15:30:00Z", creator="pat@x.com")
        )

        assert updated.id == session.id
        assert updated.date == datetime(2024, 6, 11, 15, 30)
        assert updated.status == "compareceu"

    def test_cancel_marks_session_cancelada(self, db, patient, matcher, applier, event_factory):
        _, session = reconcile(db, matcher, applier, event_factory(creator="pat@x.com"))

        result, cancelled = reconcile(db, matcher, applier, event_factory(status="cancelled", creator="pat@x.com"))

        assert result.event_type == "cancel"
        assert cancelled.id == session.id
        assert cancelled.status == "cancelada"
        assert [log.event_type for log in db.query(CalendarEventLog).order_by(CalendarEventLog.id)] == [
            "new",
            "cancel",
        ]

    def test_cancellation_without_session_is_a_no_op(self, db, patient, matcher, applier, event_factory):
        result, session = reconcile(db, matcher, applier, event_factory(status="cancelled", creator="pat@x.com"))

        assert result.event_type == "new"
        assert session is None
        assert db.query(TherapySession).count() == 0
        assert db.query(CalendarEventLog).count() == 0

    def test_error_results_are_not_applied(self, db, therapist, matcher, applier, event_factory):
        result, session = reconcile(db, matcher, applier, event_factory(summary="Sessão - Ninguém"))

        assert result.error == PATIENT_NOT_FOUND
        assert session is None
        assert db.query(TherapySession).count() == 0

    def test_concurrent_insert_is_retried_as_update(self, db, therapist, patient, applier, event_factory):
        existing = TherapySession(
            date=datetime(2024, 6, 1, 9, 0),
            google_calendar_event_id="evt1",
            patient_id=patient.id,
            therapist_id=therapist.id,
            status="compareceu",
        )
        db.add(existing)
        db.commit()
        existing_id = existing.id

        # Decision taken before the other delivery committed its row
        stale = CalendarEventProcessingResult(event_type="new", therapist_id=therapist.id, patient_id=patient.id)
        session = applier.apply(db, stale, normalize_event(event_factory(creator="pat@x.com")))

        assert session.id == existing_id
        assert session.date == datetime(2024, 6, 10, 13, 0)
        assert session.status == "compareceu"
        assert db.query(TherapySession).count() == 1
        assert [log.event_type for log in db.query(CalendarEventLog)] == ["update"]
