"""
API endpoints for session check-in and status automation
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..database import get_db
from ..domain.calendar_sync.errors import RecordNotFound
from ..domain.calendar_sync.schemas import CheckInRequest
from ..rate_limiter import rate_limit_api
from ..services.status_automation import apply_auto_check_in, record_check_in
from ..shared.validators import to_naive_utc

router = APIRouter(
    prefix="/api",
    tags=["status"],
    dependencies=[Depends(require_api_key), Depends(rate_limit_api)],
)


class CheckInResponse(BaseModel):
    message: str
    patientId: int
    sessionId: int


class AutoCheckInRequest(BaseModel):
    therapistId: Optional[int] = None
    now: Optional[datetime] = None


class AutoCheckInResult(BaseModel):
    checked_in: int
    session_ids: list[int]


@router.post("/checkin", response_model=CheckInResponse)
def check_in(data: CheckInRequest, db: Session = Depends(get_db)):
    """Record a manual check-in for a stored session"""
    try:
        return CheckInResponse(**record_check_in(db, data.patientId, data.sessionId))
    except RecordNotFound as e:
        return JSONResponse(status_code=404, content={"error": str(e)})


@router.post("/sessions/auto-check-in", response_model=AutoCheckInResult)
def run_auto_check_in(data: Optional[AutoCheckInRequest] = None, db: Session = Depends(get_db)):
    """
    Manually trigger auto check-in
    (In production, this should be run via scheduled job/cron)
    """
    data = data or AutoCheckInRequest()
    now = to_naive_utc(data.now) if data.now else None
    result = apply_auto_check_in(db, now=now, therapist_id=data.therapistId)
    return AutoCheckInResult(**result)
