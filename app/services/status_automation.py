"""
Automated status transitions for therapy sessions
Handles agendada → compareceu once a session's date has passed
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.calendar_sync.errors import RecordNotFound
from ..domain.calendar_sync.repository import SessionSyncRepository
from ..models import SESSION_ATTENDED

logger = logging.getLogger(__name__)


def apply_auto_check_in(db: Session, now: Optional[datetime] = None, therapist_id: Optional[int] = None) -> dict:
    """
    Mark past scheduled sessions as attended
    Should be run as a scheduled job (e.g., daily cron)

    Returns:
        dict: Summary of status changes made
    """
    now = now or datetime.utcnow()
    summary = {"checked_in": 0, "session_ids": []}

    try:
        sessions = SessionSyncRepository.past_scheduled_sessions(db, now, therapist_id=therapist_id)
        for session in sessions:
            session.status = SESSION_ATTENDED
            summary["session_ids"].append(session.id)
            logger.info(f"✅ Session {session.id} transitioned: agendada → compareceu")

        summary["checked_in"] = len(sessions)
        if sessions:
            db.commit()
            logger.info(f"📊 Auto check-in summary: {summary['checked_in']} sessions")
        else:
            logger.debug("ℹ️ No session status updates needed")

        return summary

    except Exception as e:
        logger.error(f"❌ Error applying auto check-in: {str(e)}")
        db.rollback()
        raise


def record_check_in(db: Session, patient_id: int, session_id: int, created_by: str = "system") -> dict:
    """
    Record a manual check-in and mark the session as attended

    Raises:
        RecordNotFound: when the patient or the session does not exist
    """
    patient = SessionSyncRepository.get_patient(db, patient_id)
    session = SessionSyncRepository.get_session(db, session_id)
    if not patient or not session:
        raise RecordNotFound("Patient or session not found")

    try:
        SessionSyncRepository.create_check_in(
            db,
            patient_id=patient.id,
            session_id=session.id,
            session_date=session.date,
            created_by=created_by,
            status=SESSION_ATTENDED,
        )
        session.status = SESSION_ATTENDED
        db.commit()
    except Exception as e:
        logger.error(f"❌ Error recording check-in for session {session_id}: {str(e)}")
        db.rollback()
        raise

    logger.info(f"✅ Check-in recorded: patient {patient.id}, session {session.id}")
    return {"message": "Check-in successful", "patientId": patient.id, "sessionId": session.id}
