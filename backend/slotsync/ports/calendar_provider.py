from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Dict, Any, List, Optional


@dataclass
class EventPage:
    """One page of a remote event listing.

    ``next_cursor`` is only meaningful on the last page (``next_page_token`` is None).
    ``cursor_valid`` False means the vendor rejected the cursor; callers restart
    with a full baseline fetch. ``window_start``/``window_end`` bound a baseline
    listing; events outside them were not listed, so their absence means nothing.
    """
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_cursor: Optional[str] = None
    cursor_valid: bool = True
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


@dataclass(frozen=True)
class RemoteEvent:
    """Vendor-neutral view of one remote event (or a deletion marker)."""
    external_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    busy: bool = True
    etag: Optional[str] = None
    deleted: bool = False
    title: Optional[str] = None
    all_day: bool = False


@dataclass
class OutgoingEvent:
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    time_zone: str = "UTC"


class CalendarProvider(Protocol):
    """Abstracts one remote calendar vendor for the sync engine."""

    vendor: str

    def list_events(
        self,
        token: str,
        cursor: Optional[str],
        page_token: Optional[str] = None,
    ) -> EventPage:
        """Return one page of events changed since ``cursor`` (full baseline when None)."""
        ...

    def parse_event(self, raw: Dict[str, Any]) -> RemoteEvent:
        """Normalize a vendor record. Raises DataError when malformed."""
        ...

    def create_event(self, token: str, event: OutgoingEvent) -> str:
        """Create a remote event and return its external id."""
        ...

    def update_event(self, token: str, external_id: str, event: OutgoingEvent) -> None:
        ...

    def delete_event(self, token: str, external_id: str) -> None:
        ...
