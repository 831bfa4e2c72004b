"""
Patient resolver
Maps a normalized calendar event to one of the therapist's patients.

Resolution order (first match wins):
1. The patient attendee's email, matched exactly (case-insensitive) against
   the therapist's patients. The patient attendee is the first attendee that
   is neither the organizer nor the creator and has not declined. When the
   event has no attendees at all, the creator's email is used instead
   (events booked by the patient from an invitation link).
2. The name in the event title, matched case-insensitively and exactly.
   Titles follow "Sessão - <Name>": the prefix may be "Sessão", "Sessao" or
   "Session" in any case, and the delimiter may be "-", "–", "—" or ":"
   with optional surrounding spaces.
"""

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Patient
from .repository import SessionSyncRepository
from .schemas import NormalizedEvent

logger = logging.getLogger(__name__)

SESSION_TITLE_PATTERN = re.compile(r"^\s*(?:sess[aã]o|session)\s*[-–—:]\s*(?P<name>.+?)\s*$", re.IGNORECASE)
SESSION_TITLE_PREFIX = "Sessão"


def build_session_title(patient_name: str) -> str:
    return f"{SESSION_TITLE_PREFIX} - {patient_name}"


def extract_patient_name(title: Optional[str]) -> Optional[str]:
    """Patient name from a "Sessão - <Name>" title, or None"""
    if not title:
        return None
    match = SESSION_TITLE_PATTERN.match(title)
    if not match:
        return None
    name = " ".join(match.group("name").split())
    return name or None


def extract_patient_email(event: NormalizedEvent) -> Optional[str]:
    """Email of the attendee that represents the patient, if any"""
    if not event.attendees:
        return event.creator_email

    excluded = {email for email in (event.organizer_email, event.creator_email) if email}
    for attendee in event.attendees:
        if attendee.email in excluded:
            continue
        if attendee.response_status == "declined":
            continue
        return attendee.email
    return None


class PatientResolver:
    """Deterministic, read-only two-stage patient lookup"""

    def __init__(self, repo: Optional[SessionSyncRepository] = None):
        self.repo = repo or SessionSyncRepository()

    def resolve(self, db: Session, event: NormalizedEvent, therapist_id: int) -> Optional[Patient]:
        """Return the matching patient, or None when neither stage matches"""
        patient_email = extract_patient_email(event)
        if patient_email:
            patient = self.repo.find_patient_by_email(db, therapist_id, patient_email)
            if patient:
                logger.debug(f"🔎 Event {event.event_id} matched patient {patient.id} by email")
                return patient

        patient_name = extract_patient_name(event.summary)
        if patient_name:
            patient = self.repo.find_patient_by_name(db, therapist_id, patient_name)
            if patient:
                logger.debug(f"🔎 Event {event.event_id} matched patient {patient.id} by title")
                return patient

        logger.info(
            f"ℹ️ No patient for event {event.event_id} "
            f"(email={patient_email or 'none'}, title name={patient_name or 'none'})"
        )
        return None
