from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from google.oauth2.credentials import Credentials

from ..errors import AuthError, DataError, ProviderRejectedError, RateLimitError, TransientError
from ..ports.calendar_provider import CalendarProvider, EventPage, OutgoingEvent, RemoteEvent

logger = logging.getLogger(__name__)

# Baseline window used when no sync token is available
BASELINE_PAST_DAYS = 30
BASELINE_FUTURE_DAYS = 90
PAGE_SIZE = 250


def _parse_google_time(value: Dict[str, Any]) -> tuple[datetime, bool]:
    if "dateTime" in value:
        return datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00")), False
    if "date" in value:
        day = datetime.fromisoformat(value["date"])
        return day.replace(tzinfo=timezone.utc), True
    raise ValueError("no dateTime/date")


def _is_rate_limited(e: HttpError) -> bool:
    if e.resp.status == 429:
        return True
    if e.resp.status == 403:
        content = e.content or b""
        return b"rateLimitExceeded" in content or b"userRateLimitExceeded" in content
    return False


def _retry_after(e: HttpError) -> Optional[float]:
    raw = e.resp.get("retry-after") if hasattr(e.resp, "get") else None
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


class GoogleCalendarProvider(CalendarProvider):
    vendor = "google"

    def __init__(self, calendar_id: str = "primary", service_factory=None):
        self.calendar_id = calendar_id
        self._service_factory = service_factory or self._build_service

    @staticmethod
    def _build_service(token: str):
        return build("calendar", "v3", credentials=Credentials(token=token), cache_discovery=False)

    def list_events(
        self,
        token: str,
        cursor: Optional[str],
        page_token: Optional[str] = None,
    ) -> EventPage:
        service = self._service_factory(token)
        params: Dict[str, Any] = {
            "calendarId": self.calendar_id,
            "maxResults": PAGE_SIZE,
            "singleEvents": True,
            "showDeleted": bool(cursor),
        }
        window_start = window_end = None
        if cursor:
            params["syncToken"] = cursor
        else:
            now = datetime.now(timezone.utc)
            window_start = now - timedelta(days=BASELINE_PAST_DAYS)
            window_end = now + timedelta(days=BASELINE_FUTURE_DAYS)
            params["timeMin"] = window_start.isoformat()
            params["timeMax"] = window_end.isoformat()
        if page_token:
            params["pageToken"] = page_token
        try:
            res = service.events().list(**params).execute()
        except HttpError as e:
            if e.resp.status == 410:  # Sync token invalid
                logger.info("Google sync token expired for calendar %s", self.calendar_id)
                return EventPage(cursor_valid=False)
            raise self._translate(e)
        except OSError as e:
            raise TransientError("NETWORK_ERROR", f"Google API unreachable: {e}")
        return EventPage(
            items=res.get("items", []),
            next_page_token=res.get("nextPageToken"),
            next_cursor=res.get("nextSyncToken"),
            window_start=window_start,
            window_end=window_end,
        )

    def parse_event(self, raw: Dict[str, Any]) -> RemoteEvent:
        event_id = raw.get("id")
        if not event_id:
            raise DataError("MALFORMED_EVENT", "event without id")
        if raw.get("status") == "cancelled":
            return RemoteEvent(external_id=event_id, deleted=True)
        try:
            start, all_day = _parse_google_time(raw.get("start") or {})
            end, _ = _parse_google_time(raw.get("end") or {})
        except (ValueError, TypeError) as e:
            raise DataError("MALFORMED_EVENT", f"event {event_id}: bad start/end ({e})")
        if end <= start:
            raise DataError("MALFORMED_EVENT", f"event {event_id}: end before start")
        return RemoteEvent(
            external_id=event_id,
            start=start,
            end=end,
            busy=raw.get("transparency") != "transparent",
            etag=raw.get("etag") or raw.get("updated"),
            title=raw.get("summary", "Untitled Event"),
            all_day=all_day,
        )

    def create_event(self, token: str, event: OutgoingEvent) -> str:
        service = self._service_factory(token)
        try:
            created = service.events().insert(calendarId=self.calendar_id, body=self._body(event)).execute()
        except HttpError as e:
            raise self._translate(e)
        return created["id"]

    def update_event(self, token: str, external_id: str, event: OutgoingEvent) -> None:
        service = self._service_factory(token)
        try:
            service.events().update(
                calendarId=self.calendar_id, eventId=external_id, body=self._body(event)
            ).execute()
        except HttpError as e:
            raise self._translate(e)

    def delete_event(self, token: str, external_id: str) -> None:
        service = self._service_factory(token)
        try:
            service.events().delete(calendarId=self.calendar_id, eventId=external_id).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                # Event already deleted
                return
            raise self._translate(e)

    @staticmethod
    def _body(event: OutgoingEvent) -> Dict[str, Any]:
        return {
            "summary": event.title,
            "description": event.description or "",
            "start": {"dateTime": event.start.isoformat(), "timeZone": event.time_zone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": event.time_zone},
        }

    @staticmethod
    def _translate(e: HttpError) -> Exception:
        if _is_rate_limited(e):
            return RateLimitError(f"Google API rate limit: {e}", retry_after=_retry_after(e))
        if e.resp.status == 401:
            return AuthError("TOKEN_REJECTED", "Google rejected the access token")
        if e.resp.status >= 500:
            return TransientError("GOOGLE_API_UNAVAILABLE", f"Google API error: {e}")
        if e.resp.status == 404:
            return ProviderRejectedError("GOOGLE_NOT_FOUND", f"Google calendar resource not found: {e}", 404)
        return ProviderRejectedError("GOOGLE_API_REJECTED", f"Google API rejected the request: {e}", e.resp.status)
