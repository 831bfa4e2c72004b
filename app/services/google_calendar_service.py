"""
Google Calendar Service
Reads events, manages push-notification channels and creates session events
through the Calendar REST API
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Type, TypeVar
from urllib.parse import quote

import google.auth.exceptions
import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account
from pydantic import BaseModel, ValidationError

from ..cache import AccessTokenCache
from ..domain.calendar_sync.errors import ProviderResponseError, UpstreamUnavailable
from ..domain.calendar_sync.resolver import build_session_title
from ..domain.calendar_sync.schemas import CalendarEvent, EventsListResponse, WatchChannelResponse

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
DEFAULT_TIME_ZONE = "America/Sao_Paulo"
MAX_PAGE_SIZE = 2500
DEFAULT_SESSION_DURATION = timedelta(hours=1)

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_rfc3339(value: datetime) -> str:
    """Naive datetimes are treated as UTC"""
    if value.tzinfo is None:
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat()


def parse_provider_response(model: Type[ModelT], payload: Any, what: str) -> ModelT:
    """Validate a provider payload, failing fast with the names of the missing fields"""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors())
        logger.error(f"❌ Unexpected {what} response from Google Calendar: {fields}")
        raise ProviderResponseError(
            f"Unexpected {what} response from Google Calendar (missing or invalid: {fields})"
        ) from e


class ServiceAccountTokenProvider:
    """Mints service-account access tokens, cached until shortly before expiry"""

    def __init__(
        self,
        key_file: str,
        scopes: list[str],
        cache: Optional[AccessTokenCache] = None,
        credentials: Optional[service_account.Credentials] = None,
    ):
        self.key_file = key_file
        self.scopes = scopes
        self.cache = cache or AccessTokenCache()
        self._credentials = credentials

    def _load_credentials(self) -> service_account.Credentials:
        if self._credentials is None:
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    self.key_file, scopes=self.scopes
                )
            except (OSError, ValueError) as e:
                logger.error(f"❌ Could not load service account key {self.key_file}: {e}")
                raise UpstreamUnavailable(f"Service account credentials unavailable: {e}") from e
        return self._credentials

    async def _refresh(self) -> tuple[str, datetime]:
        credentials = self._load_credentials()
        try:
            await asyncio.to_thread(credentials.refresh, GoogleAuthRequest())
        except google.auth.exceptions.GoogleAuthError as e:
            logger.error(f"❌ Service account token refresh failed: {e}")
            raise UpstreamUnavailable(f"Service account token refresh failed: {e}") from e

        if not credentials.token:
            raise ProviderResponseError("Service account token refresh returned no access token")
        # google-auth reports expiry as naive UTC
        expires_at = credentials.expiry or (datetime.utcnow() + timedelta(hours=1))
        return credentials.token, expires_at

    async def get_token(self) -> str:
        return await self.cache.get_or_refresh(self._refresh)


class GoogleCalendarClient:
    """
    Thin async client for the Calendar v3 REST API.

    Calls use the service-account token unless an explicit user access
    token (delegated OAuth) is passed.
    """

    def __init__(
        self,
        token_provider: ServiceAccountTokenProvider,
        base_url: str = GOOGLE_CALENDAR_API,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        time_zone: str = DEFAULT_TIME_ZONE,
    ):
        self.token_provider = token_provider
        self.time_zone = time_zone
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        token = access_token or await self.token_provider.get_token()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers={"Authorization": f"Bearer {token}"},
                    params=params,
                    json=json,
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Google Calendar request failed: {method} {path}: {e}")
            raise UpstreamUnavailable(f"Google Calendar request failed: {e}") from e

        if response.status_code not in (200, 201, 204):
            logger.error(f"❌ Google Calendar {method} {path} returned {response.status_code}: {response.text}")
            raise UpstreamUnavailable(
                f"Google Calendar returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}/events"

    async def _list_events(
        self, calendar_id: str, params: dict, max_results: Optional[int], access_token: Optional[str] = None
    ) -> list[CalendarEvent]:
        """Follow page tokens until `max_results` events arrive, or to the last page when it is None"""
        events: list[CalendarEvent] = []
        page_token = None
        while True:
            page_size = MAX_PAGE_SIZE if max_results is None else min(max_results - len(events), MAX_PAGE_SIZE)
            page_params = dict(params, maxResults=page_size)
            if page_token:
                page_params["pageToken"] = page_token

            payload = await self._request(
                "GET", self._events_path(calendar_id), access_token=access_token, params=page_params
            )
            page = parse_provider_response(EventsListResponse, payload, "events.list")
            events.extend(page.items)

            page_token = page.nextPageToken
            if not page_token:
                return events if max_results is None else events[:max_results]
            if max_results is not None and len(events) >= max_results:
                return events[:max_results]

    async def list_events_in_range(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        access_token: Optional[str] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> list[CalendarEvent]:
        """Expanded single events starting between `start` and `end`, ordered by start time"""
        params = {
            "timeMin": to_rfc3339(start),
            "timeMax": to_rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        events = await self._list_events(calendar_id, params, max_results, access_token)
        logger.info(f"📅 Found {len(events)} events in {calendar_id} between {start} and {end}")
        return events

    async def get_recent_events(
        self,
        calendar_id: str,
        window_seconds: int = 30,
        max_results: int = 10,
        now: Optional[datetime] = None,
    ) -> list[CalendarEvent]:
        """
        Events updated in the last `window_seconds`, including cancelled ones, newest first.

        Google orders by `updated` oldest first, so the whole window is paged
        before sorting and keeping the newest `max_results`.
        """
        now = now or datetime.utcnow()
        params = {
            "updatedMin": to_rfc3339(now - timedelta(seconds=window_seconds)),
            "showDeleted": "true",
            "singleEvents": "true",
            "orderBy": "updated",
        }
        events = await self._list_events(calendar_id, params, None)
        return sorted(events, key=lambda e: e.updated or "", reverse=True)[:max_results]

    async def watch_events(
        self,
        calendar_id: str,
        address: str,
        channel_id: str,
        expiration: datetime,
        token: Optional[str] = None,
    ) -> WatchChannelResponse:
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "expiration": str(int(expiration.timestamp() * 1000)),
        }
        if token:
            body["token"] = token

        payload = await self._request("POST", f"{self._events_path(calendar_id)}/watch", json=body)
        channel = parse_provider_response(WatchChannelResponse, payload, "events.watch")
        logger.info(f"✅ Watch channel created: {channel.id} (resource {channel.resourceId})")
        return channel

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        await self._request("POST", "/channels/stop", json={"id": channel_id, "resourceId": resource_id})
        logger.info(f"🛑 Stopped watch channel: {channel_id}")

    async def create_event(
        self,
        calendar_id: str,
        patient_name: str,
        start: datetime,
        time_zone: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> CalendarEvent:
        """Create a one-hour "Sessão - <Name>" event, in the client's time zone unless one is given"""
        time_zone = time_zone or self.time_zone
        end = start + DEFAULT_SESSION_DURATION
        body = {
            "summary": build_session_title(patient_name),
            "description": f"Sessão de terapia para {patient_name}",
            "start": {"dateTime": start.isoformat(), "timeZone": time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": time_zone},
        }
        payload = await self._request("POST", self._events_path(calendar_id), access_token=access_token, json=body)
        event = parse_provider_response(CalendarEvent, payload, "events.insert")
        logger.info(f"✅ Google Calendar event created: {event.id}")
        return event


def new_channel_id() -> str:
    return f"lv-calendar-webhook-{int(time.time() * 1000)}"
