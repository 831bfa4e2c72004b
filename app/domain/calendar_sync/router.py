"""Calendar sync router - Webhook, import, watch-channel and calendar-only endpoints"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from fastapi.responses import JSONResponse, PlainTextResponse

from ... import config
from ...auth import require_api_key
from ...dependencies import (
    get_calendar_client,
    get_calendar_sessions_service,
    get_calendar_sync_service,
    get_channel_service,
    get_import_service,
)
from ...rate_limiter import rate_limit_api
from ...services.google_calendar_service import GoogleCalendarClient
from ...shared.validators import parse_iso_datetime
from ...webhook_security import verify_channel_token
from .calendar_sessions import CalendarSessionsService
from .channels import WatchChannelService
from .errors import RecordNotFound, TherapistNotFound, UpstreamUnavailable
from .import_service import BulkImportService
from .schemas import (
    BillingStartDateUpdate,
    CalendarSession,
    ImportEventsRequest,
    ImportEventsResponse,
    ImportPatientRequest,
    ImportPatientResponse,
    PatientWithSessions,
    WebhookChannelResponse,
    WebhookSetupResponse,
    WebhookStopResponse,
)
from .service import CalendarSyncService, handle_calendar_notification

logger = logging.getLogger(__name__)

# The webhook is called by Google and carries no API key
webhook_router = APIRouter(prefix="/api", tags=["Calendar Webhook"])

router = APIRouter(
    prefix="/api",
    tags=["Calendar Sync"],
    dependencies=[Depends(require_api_key), Depends(rate_limit_api)],
)


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    content = {"error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _parse_range(start: Optional[str], end: Optional[str]) -> tuple[Optional[datetime], Optional[datetime]]:
    return (parse_iso_datetime(start) if start else None, parse_iso_datetime(end) if end else None)


# ============================================================================
# GOOGLE CALENDAR PUSH NOTIFICATIONS
# ============================================================================


@webhook_router.post("/calendar-webhook", response_class=PlainTextResponse)
async def calendar_webhook(
    background_tasks: BackgroundTasks,
    channel_id: Optional[str] = Header(default=None, alias="X-Goog-Channel-ID"),
    resource_state: Optional[str] = Header(default=None, alias="X-Goog-Resource-State"),
    resource_id: Optional[str] = Header(default=None, alias="X-Goog-Resource-ID"),
    channel_token: Optional[str] = Header(default=None, alias="X-Goog-Channel-Token"),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """Acknowledge immediately; reconciliation runs after the response is sent"""
    logger.info(f"📨 Calendar webhook: channel={channel_id} state={resource_state} resource={resource_id}")

    if verify_channel_token(channel_token, config.GOOGLE_WEBHOOK_TOKEN, channel_id):
        background_tasks.add_task(handle_calendar_notification, service, channel_id, resource_state)

    return PlainTextResponse("OK", status_code=200)


# ============================================================================
# WATCH CHANNELS
# ============================================================================


@router.post("/setup-webhook", response_model=WebhookSetupResponse)
async def setup_webhook(service: WatchChannelService = Depends(get_channel_service)):
    """Replace all registered channels with a fresh one for this deployment"""
    webhook_url = config.get_current_webhook_url()
    if not webhook_url:
        return error_response(400, "Failed to setup webhook", "WEBHOOK_URL is not configured")

    try:
        channel = await service.create_channel(webhook_url)
    except UpstreamUnavailable as e:
        logger.error(f"❌ Webhook setup failed: {e}")
        return error_response(502, "Failed to setup webhook", str(e))

    return WebhookSetupResponse(
        message="Webhook setup successful",
        result=WebhookChannelResponse(
            channelId=channel.channel_id, resourceId=channel.resource_id, expiration=channel.expiration
        ),
    )


@router.post("/stop-webhooks", response_model=WebhookStopResponse)
async def stop_webhooks(service: WatchChannelService = Depends(get_channel_service)):
    stopped = await service.stop_all_channels()
    return WebhookStopResponse(message="Webhooks stopped", stopped=stopped)


# ============================================================================
# BULK IMPORT
# ============================================================================


@router.post("/import/patient-with-sessions", response_model=ImportPatientResponse)
def import_patient_with_sessions(
    data: ImportPatientRequest,
    service: BulkImportService = Depends(get_import_service),
):
    """Import one patient and their calendar sessions in a single transaction"""
    try:
        return service.import_patient_with_sessions(data.therapistEmail, data.patientData)
    except TherapistNotFound:
        return error_response(404, "Therapist not found")
    except Exception as e:
        logger.exception("❌ Error importing patient with sessions")
        return error_response(500, "Failed to import patient and sessions", str(e))


@router.post("/import/events", response_model=ImportEventsResponse)
def import_events(
    data: ImportEventsRequest,
    service: BulkImportService = Depends(get_import_service),
):
    """Import a batch of already-fetched calendar events"""
    try:
        return service.import_events(
            data.therapistEmail,
            data.events,
            billing_start_dates=data.billingStartDates,
            default_billing_start_date=data.defaultBillingStartDate,
        )
    except TherapistNotFound:
        return error_response(404, "Therapist not found")
    except Exception as e:
        logger.exception("❌ Error importing calendar events")
        return error_response(500, "Failed to import calendar events", str(e))


@router.get("/import/calendar/events-for-import")
async def get_events_for_import(
    calendar_id: Optional[str] = Query(None, alias="calendarId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    use_user_auth: bool = Query(False, alias="useUserAuth"),
    user_access_token: Optional[str] = Header(default=None, alias="X-Google-Access-Token"),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
):
    """Raw events in a date range, read with the service account or the user's own token"""
    start, end = _parse_range(start_date, end_date)
    if not calendar_id or not start or not end:
        return error_response(400, "Missing required parameters: calendarId, startDate, endDate")

    if use_user_auth and not user_access_token:
        return error_response(401, "User Google access token required for calendar import")

    logger.info(f"📅 Fetching events for import: {calendar_id} {start} → {end} (user auth: {use_user_auth})")
    try:
        events = await calendar.list_events_in_range(
            calendar_id, start, end, access_token=user_access_token if use_user_auth else None
        )
    except UpstreamUnavailable as e:
        return error_response(502, "Failed to fetch calendar events", str(e))

    logger.info(f"📊 Found {len(events)} events in range")
    return [event.model_dump(mode="json", by_alias=True, exclude_none=True) for event in events]


# ============================================================================
# CALENDAR-ONLY VIEWS
# ============================================================================


@router.get("/calendar-only/patients/{patient_id}", response_model=list[CalendarSession])
async def get_patient_calendar_sessions(
    patient_id: int,
    user_access_token: Optional[str] = Query(None, alias="userAccessToken"),
    service: CalendarSessionsService = Depends(get_calendar_sessions_service),
):
    try:
        return await service.get_patient_sessions(patient_id, access_token=user_access_token)
    except RecordNotFound as e:
        return error_response(404, str(e))
    except UpstreamUnavailable as e:
        return error_response(502, "Failed to get patient sessions from calendar", str(e))


@router.get("/calendar-only/patients", response_model=list[PatientWithSessions])
async def get_patients_with_calendar_sessions(
    therapist_email: Optional[str] = Query(None, alias="therapistEmail"),
    user_access_token: Optional[str] = Query(None, alias="userAccessToken"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    service: CalendarSessionsService = Depends(get_calendar_sessions_service),
):
    if not therapist_email:
        return error_response(400, "therapistEmail is required")

    start, end = _parse_range(start_date, end_date)
    try:
        return await service.get_patients_with_sessions(
            therapist_email, access_token=user_access_token, start=start, end=end
        )
    except TherapistNotFound:
        return error_response(404, "Therapist not found")
    except UpstreamUnavailable as e:
        return error_response(502, "Failed to get patients with sessions from calendar", str(e))


@router.get("/calendar-only/sessions", response_model=list[CalendarSession])
async def get_calendar_sessions_with_payments(
    therapist_email: Optional[str] = Query(None, alias="therapistEmail"),
    user_access_token: Optional[str] = Query(None, alias="userAccessToken"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    auto_check_in: bool = Query(False, alias="autoCheckIn"),
    service: CalendarSessionsService = Depends(get_calendar_sessions_service),
):
    if not therapist_email:
        return error_response(400, "therapistEmail is required")

    start, end = _parse_range(start_date, end_date)
    try:
        return await service.get_sessions_with_payments(
            therapist_email, access_token=user_access_token, start=start, end=end, auto_check_in=auto_check_in
        )
    except TherapistNotFound:
        return error_response(404, "Therapist not found")
    except UpstreamUnavailable as e:
        return error_response(502, "Failed to get sessions with payments from calendar", str(e))


@router.put("/calendar-only/patients/{patient_id}/billing-start-date")
def update_patient_billing_start_date(
    patient_id: int,
    data: BillingStartDateUpdate,
    service: CalendarSessionsService = Depends(get_calendar_sessions_service),
):
    try:
        patient = service.update_billing_start_date(patient_id, data.startDate)
    except RecordNotFound as e:
        return error_response(404, str(e))

    return {
        "message": "Patient billing start date updated successfully",
        "patientId": patient.id,
        "newStartDate": patient.billing_start_date.isoformat(),
    }
