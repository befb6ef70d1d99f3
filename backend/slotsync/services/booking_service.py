from __future__ import annotations
import logging
import secrets
import string
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..db import models
from ..domain.enums import BookingStatus
from ..domain.intervals import Interval, ensure_utc, first_overlap
from ..errors import ConflictError, NotFoundError, ValidationAppError
from .availability_service import AvailabilityRequest, AvailabilityService, WorkingRule, within_rule
from .calendar_write_back import BookingWriteBack

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Check-then-insert has to be atomic within the process.
_commit_lock = threading.Lock()


def generate_confirmation_code(length: int = 8) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


@dataclass
class BookingRequest:
    start: datetime
    duration_minutes: int
    person_id: Optional[str] = None
    agent_id: Optional[str] = None
    attendee_name: Optional[str] = None
    attendee_phone: Optional[str] = None
    attendee_email: Optional[str] = None
    notes: Optional[str] = None


class BookingService:
    """Commits a slot as an internal booking after re-checking it is still free."""

    def __init__(
        self,
        availability: AvailabilityService | None = None,
        write_back: BookingWriteBack | None = None,
    ):
        self.availability = availability or AvailabilityService()
        self.write_back = write_back

    def rule_for(self, db: Session, person_id: str) -> Optional[WorkingRule]:
        model = self.availability.rule_repo.default_rule(db, person_id)
        return WorkingRule.from_model(model) if model else None

    def is_free(self, db: Session, person_id: str, slot: Interval, rule: WorkingRule | None = None) -> bool:
        rule = rule or self.rule_for(db, person_id)
        before = timedelta(minutes=rule.buffer_before if rule else 0)
        after = timedelta(minutes=rule.buffer_after if rule else 0)
        padded = slot.widened(before, after)
        busy = sorted(self.availability.load_busy(db, person_id, padded))
        return first_overlap(padded, busy) is None

    def candidates(self, db: Session, request: BookingRequest) -> List[str]:
        if request.person_id:
            return [request.person_id]
        return self.availability.resolve_candidates(
            db,
            AvailabilityRequest(
                date=ensure_utc(request.start).date(),
                duration_minutes=request.duration_minutes,
                agent_id=request.agent_id,
            ),
        )

    def confirm(self, db: Session, request: BookingRequest) -> models.InternalBooking:
        if request.duration_minutes is None or request.duration_minutes <= 0:
            raise ValidationAppError("INVALID_DURATION", "duration must be a positive number of minutes")
        start = ensure_utc(request.start)
        slot = Interval(start, start + timedelta(minutes=request.duration_minutes))
        now = self.availability.now()

        with _commit_lock:
            person_id = None
            in_hours = False
            for candidate in self.candidates(db, request):
                rule = self.rule_for(db, candidate)
                if rule is None or not within_rule(slot, rule, now):
                    continue
                in_hours = True
                if self.is_free(db, candidate, slot, rule):
                    person_id = candidate
                    break
            if person_id is None:
                logger.info("Booking rejected, slot %s-%s not bookable", slot.start, slot.end)
                if not in_hours:
                    raise ConflictError("OUTSIDE_WORKING_HOURS", "requested time is outside working hours")
                raise ConflictError("SLOT_UNAVAILABLE", "slot no longer available")

            booking = models.InternalBooking(
                user_id=person_id,
                agent_id=request.agent_id,
                start_at=slot.start,
                end_at=slot.end,
                status=BookingStatus.CONFIRMED.value,
                attendee_name=request.attendee_name,
                attendee_phone=request.attendee_phone,
                attendee_email=request.attendee_email,
                notes=request.notes,
                confirmation_code=generate_confirmation_code(),
            )
            self.availability.booking_repo.add(db, booking)
            db.commit()
        logger.info("Booked %s for %s (code %s)", slot.start.isoformat(), person_id, booking.confirmation_code)
        if self.write_back is not None:
            self.write_back.push(db, booking)
        return booking

    def cancel(self, db: Session, booking_id: str) -> models.InternalBooking:
        booking = self.availability.booking_repo.get(db, booking_id)
        if booking is None:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
        if booking.status == BookingStatus.CANCELLED.value:
            return booking
        booking.status = BookingStatus.CANCELLED.value
        db.commit()
        logger.info("Cancelled booking %s for %s", booking.id, booking.user_id)
        if self.write_back is not None:
            self.write_back.remove(db, booking)
        return booking
