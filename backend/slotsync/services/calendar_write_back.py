"""Mirror internal bookings onto the booked person's connected calendar.

Best-effort: a vendor failure is logged and the booking stands. The mirrored
event comes back through the next sync like any other busy event.
"""
from __future__ import annotations
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..adapters.factory import build_provider
from ..db import models
from ..domain.enums import ConnectionStatus
from ..domain.intervals import ensure_utc
from ..errors import BaseAppException
from ..ports.calendar_provider import CalendarProvider, OutgoingEvent
from ..repositories.connection_repository import ConnectionRepository, SqlAlchemyConnectionRepository
from ..repositories.event_repository import EventRepository, SqlAlchemyEventRepository
from .token_vault import TokenVault

logger = logging.getLogger(__name__)


def booking_event(booking: models.InternalBooking) -> OutgoingEvent:
    lines = [
        f"Phone: {booking.attendee_phone}" if booking.attendee_phone else None,
        f"Email: {booking.attendee_email}" if booking.attendee_email else None,
        f"Notes: {booking.notes}" if booking.notes else None,
        f"Confirmation code: {booking.confirmation_code}",
    ]
    return OutgoingEvent(
        title=f"Appointment with {booking.attendee_name or 'guest'}",
        start=ensure_utc(booking.start_at),
        end=ensure_utc(booking.end_at),
        description="\n".join(line for line in lines if line),
    )


class BookingWriteBack:
    def __init__(
        self,
        token_vault: TokenVault,
        provider_factory: Callable[[str, str], CalendarProvider] = build_provider,
        connection_repo: ConnectionRepository | None = None,
        event_repo: EventRepository | None = None,
    ):
        self.token_vault = token_vault
        self.provider_factory = provider_factory
        self.connection_repo = connection_repo or SqlAlchemyConnectionRepository()
        self.event_repo = event_repo or SqlAlchemyEventRepository()

    def push(self, db: Session, booking: models.InternalBooking) -> bool:
        """Create the remote event and remember its id on the booking."""
        conn = self._connection_for(db, booking.user_id)
        if conn is None:
            return False
        try:
            token = self.token_vault.get_valid_token(conn.id)
            provider = self.provider_factory(conn.vendor, conn.external_calendar_id)
            external_id = provider.create_event(token, booking_event(booking))
        except (BaseAppException, OSError) as e:
            logger.warning("Could not write booking %s to %s calendar: %s", booking.id, conn.vendor, e)
            return False
        booking.connection_id = conn.id
        booking.external_event_id = external_id
        db.commit()
        logger.info("Booking %s mirrored as %s event %s", booking.id, conn.vendor, external_id)
        return True

    def remove(self, db: Session, booking: models.InternalBooking) -> bool:
        """Delete the mirrored remote event and its local copy."""
        if not booking.connection_id or not booking.external_event_id:
            return False
        conn = self.connection_repo.get(db, booking.connection_id)
        if conn is None:
            return False
        try:
            token = self.token_vault.get_valid_token(conn.id)
            self.provider_factory(conn.vendor, conn.external_calendar_id).delete_event(token, booking.external_event_id)
        except (BaseAppException, OSError) as e:
            logger.warning("Could not remove booking %s from %s calendar: %s", booking.id, conn.vendor, e)
            return False
        mirrored = self.event_repo.find_by_external_id(db, conn.id, booking.external_event_id)
        if mirrored is not None:
            self.event_repo.delete(db, mirrored)
            db.commit()
        return True

    def _connection_for(self, db: Session, user_id: str) -> Optional[models.ProviderConnection]:
        for conn in self.connection_repo.list_by_user(db, user_id):
            if conn.status == ConnectionStatus.ACTIVE.value and conn.sync_enabled:
                return conn
        return None
