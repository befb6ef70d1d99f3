"""Microsoft Graph calendar adapter.

Incremental sync uses ``calendarView/delta``: intermediate pages carry an
``@odata.nextLink`` and the last page an ``@odata.deltaLink``, which is stored
as the opaque cursor. Deletions arrive as items with an ``@removed`` marker.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

import requests

from ..errors import AuthError, DataError, ProviderRejectedError, RateLimitError, TransientError
from ..ports.calendar_provider import CalendarProvider, EventPage, OutgoingEvent, RemoteEvent

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
BASELINE_PAST_DAYS = 30
BASELINE_FUTURE_DAYS = 90
PAGE_SIZE = 250
REQUEST_TIMEOUT_SECONDS = 30
_CURSOR_EXPIRED_CODES = {"syncStateNotFound", "resyncRequired", "SyncStateNotFound"}


def _parse_graph_time(value: Dict[str, Any]) -> datetime:
    raw = value["dateTime"]
    # Graph emits 7 fractional digits; keep microseconds only
    if "." in raw:
        head, frac = raw.split(".", 1)
        raw = f"{head}.{frac[:6]}"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        # Prefer: outlook.timezone="UTC" is always sent
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OutlookCalendarProvider(CalendarProvider):
    vendor = "outlook"

    def __init__(self, calendar_id: str = "primary", session: Optional[requests.Session] = None):
        self.calendar_id = calendar_id
        self._session = session or requests.Session()

    def _calendar_path(self) -> str:
        if self.calendar_id in (None, "", "primary"):
            return "/me"
        return f"/me/calendars/{self.calendar_id}"

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Prefer": f'outlook.timezone="UTC", odata.maxpagesize={PAGE_SIZE}',
        }

    def _request(self, method: str, url: str, token: str, **kwargs) -> requests.Response:
        try:
            resp = self._session.request(
                method, url, headers=self._headers(token), timeout=REQUEST_TIMEOUT_SECONDS, **kwargs
            )
        except requests.RequestException as e:
            raise TransientError("NETWORK_ERROR", f"Graph API unreachable: {e}")
        if resp.status_code == 429 or (resp.status_code == 503 and resp.headers.get("Retry-After")):
            retry_after = resp.headers.get("Retry-After")
            raise RateLimitError(
                f"Graph API throttled ({resp.status_code})",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if resp.status_code == 401:
            raise AuthError("TOKEN_REJECTED", "Microsoft Graph rejected the access token")
        if resp.status_code >= 500:
            raise TransientError("GRAPH_API_UNAVAILABLE", f"Graph API error: {resp.status_code}")
        return resp

    def list_events(
        self,
        token: str,
        cursor: Optional[str],
        page_token: Optional[str] = None,
    ) -> EventPage:
        window_start = window_end = None
        if page_token:
            url, params = page_token, None
        elif cursor:
            url, params = cursor, None
        else:
            now = datetime.now(timezone.utc)
            window_start = now - timedelta(days=BASELINE_PAST_DAYS)
            window_end = now + timedelta(days=BASELINE_FUTURE_DAYS)
            url = f"{GRAPH_BASE_URL}{self._calendar_path()}/calendarView/delta"
            params = {
                "startDateTime": window_start.isoformat(),
                "endDateTime": window_end.isoformat(),
            }
        resp = self._request("GET", url, token, params=params)
        if resp.status_code == 410 or (resp.status_code >= 400 and self._error_code(resp) in _CURSOR_EXPIRED_CODES):
            logger.info("Graph delta link expired for calendar %s", self.calendar_id)
            return EventPage(cursor_valid=False)
        if resp.status_code >= 400:
            raise self._rejected(resp, "list events")
        body = resp.json()
        return EventPage(
            items=body.get("value", []),
            next_page_token=body.get("@odata.nextLink"),
            next_cursor=body.get("@odata.deltaLink"),
            window_start=window_start,
            window_end=window_end,
        )

    @staticmethod
    def _rejected(resp: requests.Response, action: str) -> ProviderRejectedError:
        code = "GRAPH_NOT_FOUND" if resp.status_code == 404 else "GRAPH_API_REJECTED"
        return ProviderRejectedError(code, f"Graph API refused to {action}: {resp.status_code}", resp.status_code)

    @staticmethod
    def _error_code(resp: requests.Response) -> Optional[str]:
        try:
            return (resp.json().get("error") or {}).get("code")
        except ValueError:
            return None

    def parse_event(self, raw: Dict[str, Any]) -> RemoteEvent:
        event_id = raw.get("id")
        if not event_id:
            raise DataError("MALFORMED_EVENT", "event without id")
        if "@removed" in raw or raw.get("isCancelled"):
            return RemoteEvent(external_id=event_id, deleted=True)
        try:
            start = _parse_graph_time(raw["start"])
            end = _parse_graph_time(raw["end"])
        except (KeyError, ValueError, TypeError) as e:
            raise DataError("MALFORMED_EVENT", f"event {event_id}: bad start/end ({e})")
        if end <= start:
            raise DataError("MALFORMED_EVENT", f"event {event_id}: end before start")
        return RemoteEvent(
            external_id=event_id,
            start=start,
            end=end,
            busy=raw.get("showAs", "busy") not in ("free", "workingElsewhere"),
            etag=raw.get("changeKey") or raw.get("@odata.etag"),
            title=raw.get("subject") or "Untitled Event",
            all_day=bool(raw.get("isAllDay")),
        )

    def create_event(self, token: str, event: OutgoingEvent) -> str:
        resp = self._request("POST", f"{GRAPH_BASE_URL}{self._calendar_path()}/events", token, json=self._body(event))
        if resp.status_code >= 400:
            raise self._rejected(resp, "create event")
        return resp.json()["id"]

    def update_event(self, token: str, external_id: str, event: OutgoingEvent) -> None:
        resp = self._request("PATCH", f"{GRAPH_BASE_URL}/me/events/{external_id}", token, json=self._body(event))
        if resp.status_code >= 400:
            raise self._rejected(resp, "update event")

    def delete_event(self, token: str, external_id: str) -> None:
        resp = self._request("DELETE", f"{GRAPH_BASE_URL}/me/events/{external_id}", token)
        if resp.status_code in (404, 410):
            return
        if resp.status_code >= 400:
            raise self._rejected(resp, "delete event")

    @staticmethod
    def _body(event: OutgoingEvent) -> Dict[str, Any]:
        return {
            "subject": event.title,
            "body": {"contentType": "text", "content": event.description or ""},
            "start": {"dateTime": event.start.isoformat(), "timeZone": event.time_zone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": event.time_zone},
        }
