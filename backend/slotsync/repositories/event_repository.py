from __future__ import annotations
from typing import Protocol, Dict, List, Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session

from ..db import models
from ..domain.intervals import ensure_utc
from ..ports.calendar_provider import RemoteEvent


class EventRepository(Protocol):
    def partition(self, db: Session, connection_id: str) -> Dict[str, models.CalendarEvent]: ...
    def create(self, db: Session, connection: models.ProviderConnection, remote: RemoteEvent) -> models.CalendarEvent: ...
    def update(self, db: Session, event: models.CalendarEvent, remote: RemoteEvent) -> None: ...
    def delete(self, db: Session, event: models.CalendarEvent) -> None: ...
    def delete_by_connection(self, db: Session, connection_id: str) -> int: ...
    def find_by_external_id(self, db: Session, connection_id: str, external_id: str) -> Optional[models.CalendarEvent]: ...
    def find_busy_overlapping(self, db: Session, user_id: str, start: datetime, end: datetime) -> List[models.CalendarEvent]: ...


class SqlAlchemyEventRepository:
    """Local event store; each connection's rows form its own partition."""

    def partition(self, db: Session, connection_id: str) -> Dict[str, models.CalendarEvent]:
        rows = db.query(models.CalendarEvent).filter(models.CalendarEvent.connection_id == connection_id).all()
        return {r.external_event_id: r for r in rows}

    def create(self, db: Session, connection: models.ProviderConnection, remote: RemoteEvent) -> models.CalendarEvent:
        ev = models.CalendarEvent(
            connection_id=connection.id,
            user_id=connection.user_id,
            external_event_id=remote.external_id,
            title=remote.title,
            start_at=remote.start,
            end_at=remote.end,
            all_day=remote.all_day,
            busy=remote.busy,
            etag=remote.etag,
        )
        db.add(ev)
        return ev

    def update(self, db: Session, event: models.CalendarEvent, remote: RemoteEvent) -> None:
        event.title = remote.title
        event.start_at = remote.start
        event.end_at = remote.end
        event.all_day = remote.all_day
        event.busy = remote.busy
        event.etag = remote.etag
        event.updated_at = datetime.now(timezone.utc)

    def delete(self, db: Session, event: models.CalendarEvent) -> None:
        db.delete(event)

    def delete_by_connection(self, db: Session, connection_id: str) -> int:
        return (
            db.query(models.CalendarEvent)
            .filter(models.CalendarEvent.connection_id == connection_id)
            .delete(synchronize_session=False)
        )

    def find_by_external_id(self, db: Session, connection_id: str, external_id: str) -> Optional[models.CalendarEvent]:
        return (
            db.query(models.CalendarEvent)
            .filter(
                models.CalendarEvent.connection_id == connection_id,
                models.CalendarEvent.external_event_id == external_id,
            )
            .first()
        )

    def find_busy_overlapping(self, db: Session, user_id: str, start: datetime, end: datetime) -> List[models.CalendarEvent]:
        q = db.query(models.CalendarEvent)
        q = q.filter(models.CalendarEvent.user_id == user_id)
        q = q.filter(models.CalendarEvent.busy.is_(True))
        q = q.filter(models.CalendarEvent.start_at < end)
        q = q.filter(models.CalendarEvent.end_at > start)
        return q.all()


def same_content(event: models.CalendarEvent, remote: RemoteEvent) -> bool:
    """True when the local row already mirrors ``remote``."""
    if remote.etag and event.etag:
        return remote.etag == event.etag
    return (
        ensure_utc(event.start_at) == ensure_utc(remote.start)
        and ensure_utc(event.end_at) == ensure_utc(remote.end)
        and bool(event.busy) == remote.busy
    )
