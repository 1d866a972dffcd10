"""Google Calendar sync via the REST API.

Authenticates as a service account through google-auth; the credentials
object caches its access token and refreshes it once expired.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from core.config import Settings, get_settings
from core.http_retry import RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
BATCH_SIZE = 10


class CalendarError(RuntimeError):
    pass


@dataclass
class CalendarEvent:
    title: str
    start: datetime | date
    end: datetime | date
    description: str = ""
    location: str = ""
    is_all_day: bool = False


@dataclass
class CalendarSyncResult:
    success: bool
    event: CalendarEvent
    google_event_id: Optional[str] = None
    error: Optional[str] = None


def build_event_body(event: CalendarEvent, time_zone: str) -> dict[str, Any]:
    def _point(value: datetime | date) -> dict[str, str]:
        if event.is_all_day:
            day = value.date() if isinstance(value, datetime) else value
            return {"date": day.isoformat()}
        return {"dateTime": value.isoformat(), "timeZone": time_zone}

    return {
        "summary": event.title,
        "description": event.description or "",
        "location": event.location or "",
        "start": _point(event.start),
        "end": _point(event.end),
    }


class GoogleCalendarClient:
    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
        retry_policy: RetryPolicy | None = None,
        credentials: Any = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self._credentials = credentials
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.settings.http_retry_attempts, timeout=self.settings.http_timeout_seconds
        )

    @property
    def configured(self) -> bool:
        return self.settings.calendar_enabled and bool(self.settings.google_calendar_id)

    def _service_account_credentials(self) -> Any:
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_info(
                {
                    "client_email": self.settings.google_service_account_email,
                    "private_key": self.settings.google_private_key,
                    "token_uri": GOOGLE_TOKEN_URL,
                },
                scopes=[CALENDAR_SCOPE],
            )
        return self._credentials

    def access_token(self) -> str:
        credentials = self._service_account_credentials()
        if not credentials.valid:
            try:
                credentials.refresh(GoogleAuthRequest())
            except GoogleAuthError as exc:
                logger.error("calendar_token_refresh_failed", extra={"error": str(exc)})
                raise CalendarError(f"Token exchange failed: {exc}") from exc
        return credentials.token

    def _events_url(self, event_id: str | None = None) -> str:
        base = f"{CALENDAR_API_BASE}/calendars/{quote(self.settings.google_calendar_id, safe='')}/events"
        return f"{base}/{quote(event_id, safe='')}" if event_id else base

    def _call(self, method: str, url: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise CalendarError("Google Calendar is not configured")
        headers = {"Authorization": f"Bearer {self.access_token()}"}
        client = self._client or httpx.Client()
        try:
            resp = request_with_retry(client, method, url, json=body, headers=headers, policy=self.retry_policy)
        finally:
            if self._client is None:
                client.close()
        if resp.status_code >= 400:
            raise CalendarError(f"Calendar API {method} failed ({resp.status_code})")
        return resp.json() if resp.content else {}

    def add_event(self, event: CalendarEvent) -> dict[str, Any]:
        return self._call("POST", self._events_url(), build_event_body(event, self.settings.time_zone))

    def add_events(self, events: list[CalendarEvent]) -> list[CalendarSyncResult]:
        results: list[CalendarSyncResult] = []
        for offset in range(0, len(events), BATCH_SIZE):
            for event in events[offset : offset + BATCH_SIZE]:
                try:
                    created = self.add_event(event)
                    results.append(CalendarSyncResult(success=True, event=event, google_event_id=created.get("id")))
                except (CalendarError, httpx.HTTPError) as exc:
                    logger.error("calendar_event_add_failed", extra={"title": event.title, "error": str(exc)})
                    results.append(CalendarSyncResult(success=False, event=event, error=str(exc)))
        return results

    def update_event(self, event_id: str, event: CalendarEvent) -> dict[str, Any]:
        return self._call("PUT", self._events_url(event_id), build_event_body(event, self.settings.time_zone))

    def delete_event(self, event_id: str) -> None:
        self._call("DELETE", self._events_url(event_id))


def get_calendar_client() -> GoogleCalendarClient:
    return GoogleCalendarClient()
