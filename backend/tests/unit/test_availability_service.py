from datetime import date, datetime, timezone

import pytest

from slotsync.db import models
from slotsync.errors import ConflictError, NotFoundError, TransientError
from slotsync.services.availability_service import AvailabilityRequest, AvailabilityService
from slotsync.services.booking_service import BookingRequest, BookingService
from slotsync.services.calendar_write_back import BookingWriteBack

MONDAY = date(2025, 3, 10)
EARLY = datetime(2025, 3, 1, tzinfo=timezone.utc)


def at(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute, tzinfo=timezone.utc)


def service():
    return AvailabilityService(clock=lambda: EARLY, default_granularity=30)


def add_event(db, conn, ext_id, start, end, busy=True, user_id="u1"):
    db.add(models.CalendarEvent(
        connection_id=conn.id, user_id=user_id, external_event_id=ext_id,
        start_at=start, end_at=end, busy=busy,
    ))
    db.commit()


def test_query_excludes_synced_events_and_confirmed_bookings(db, make_connection, make_rule):
    make_rule("u1")
    conn = make_connection()
    add_event(db, conn, "e1", at(10), at(10, 30))
    add_event(db, conn, "free-time", at(11), at(11, 30), busy=False)
    db.add(models.InternalBooking(user_id="u1", start_at=at(14), end_at=at(14, 30), status="confirmed"))
    db.add(models.InternalBooking(user_id="u1", start_at=at(15), end_at=at(15, 30), status="cancelled"))
    db.commit()

    result = service().query(db, AvailabilityRequest(date=MONDAY, duration_minutes=30, timezone="UTC", person_ids=("u1",)))
    starts = [s.start for s in result.slots]
    assert result.total == 14
    assert at(10) not in starts
    assert at(14) not in starts
    assert at(11) in starts
    assert at(15) in starts
    assert result.summary.message.startswith("I have 14 available slots on 2025-03-10.")


def test_candidates_come_from_agent_assignment(db, make_rule):
    make_rule("u1")
    make_rule("u2")
    make_rule("u3")
    db.add(models.AgentAssignment(agent_id="agent-1", assignable_user_ids=["u3", "u2"]))
    db.commit()

    result = service().query(db, AvailabilityRequest(date=MONDAY, duration_minutes=30, timezone="UTC", agent_id="agent-1"))
    assert {s.person_id for s in result.slots} == {"u2", "u3"}


def test_candidates_default_to_everyone_with_rules(db, make_rule):
    make_rule("u1")
    make_rule("u2", active=False)
    result = service().query(db, AvailabilityRequest(date=MONDAY, duration_minutes=60, timezone="UTC"))
    assert {s.person_id for s in result.slots} == {"u1"}
    assert result.total == 8


def test_rule_timezone_used_when_request_has_none(db, make_rule):
    make_rule("u1", tz="Europe/Berlin")
    result = service().query(db, AvailabilityRequest(date=MONDAY, duration_minutes=30, person_ids=("u1",)))
    # 09:00 CET
    assert result.slots[0].start == at(8)


# --- booking commit check ---

def booking_service():
    return BookingService(service())


def test_confirm_stores_booking_with_code(db, make_rule):
    make_rule("u1")
    booking = booking_service().confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1", attendee_name="Ada"))
    assert booking.id
    assert booking.user_id == "u1"
    assert booking.status == "confirmed"
    assert len(booking.confirmation_code) == 8
    assert booking.confirmation_code.isalnum()


def test_second_booking_of_same_slot_conflicts(db, make_rule):
    make_rule("u1")
    svc = booking_service()
    svc.confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    with pytest.raises(ConflictError) as exc:
        svc.confirm(db, BookingRequest(start=at(9, 15), duration_minutes=30, person_id="u1"))
    assert exc.value.code == "SLOT_UNAVAILABLE"
    assert db.query(models.InternalBooking).count() == 1


def test_synced_event_blocks_booking(db, make_connection, make_rule):
    make_rule("u1", buffer_after=15)
    conn = make_connection()
    add_event(db, conn, "e1", at(10), at(10, 30))
    with pytest.raises(ConflictError):
        booking_service().confirm(db, BookingRequest(start=at(9, 30), duration_minutes=30, person_id="u1"))


def test_agent_booking_falls_through_to_next_free_person(db, make_connection, make_rule):
    make_rule("u1")
    make_rule("u2")
    db.add(models.AgentAssignment(agent_id="agent-1", assignable_user_ids=["u1", "u2"]))
    db.commit()
    conn = make_connection(user_id="u1")
    add_event(db, conn, "e1", at(9), at(10))

    booking = booking_service().confirm(db, BookingRequest(start=at(9), duration_minutes=30, agent_id="agent-1"))
    assert booking.user_id == "u2"
    assert booking.agent_id == "agent-1"


def test_booking_outside_working_hours_is_refused(db, make_rule):
    make_rule("u1")
    with pytest.raises(ConflictError) as exc:
        booking_service().confirm(db, BookingRequest(start=at(3), duration_minutes=30, person_id="u1"))
    assert exc.value.code == "OUTSIDE_WORKING_HOURS"
    # Straddling the end of the day is refused too
    with pytest.raises(ConflictError) as exc:
        booking_service().confirm(db, BookingRequest(start=at(16, 45), duration_minutes=30, person_id="u1"))
    assert exc.value.code == "OUTSIDE_WORKING_HOURS"
    assert db.query(models.InternalBooking).count() == 0


def test_booking_inside_min_notice_is_refused(db, make_rule):
    make_rule("u1", min_booking_notice=60)
    svc = BookingService(AvailabilityService(clock=lambda: at(8, 30)))
    with pytest.raises(ConflictError) as exc:
        svc.confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    assert exc.value.code == "OUTSIDE_WORKING_HOURS"
    assert svc.confirm(db, BookingRequest(start=at(10), duration_minutes=30, person_id="u1")).user_id == "u1"


def test_cancel_frees_the_slot(db, make_rule):
    make_rule("u1")
    svc = booking_service()
    booking = svc.confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))

    cancelled = svc.cancel(db, booking.id)
    assert cancelled.status == "cancelled"
    # Idempotent
    assert svc.cancel(db, booking.id).status == "cancelled"

    again = svc.confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    assert again.id != booking.id


def test_cancel_unknown_booking(db):
    with pytest.raises(NotFoundError) as exc:
        booking_service().cancel(db, "missing")
    assert exc.value.code == "BOOKING_NOT_FOUND"


# --- write-back to the connected calendar ---

class StubVault:
    def __init__(self, error=None):
        self.error = error

    def get_valid_token(self, connection_id):
        if self.error:
            raise self.error
        return "tok"


class RecordingProvider:
    vendor = "google"

    def __init__(self, error=None):
        self.error = error
        self.created = []
        self.deleted = []

    def create_event(self, token, event):
        if self.error:
            raise self.error
        self.created.append(event)
        return f"remote-{len(self.created)}"

    def delete_event(self, token, external_id):
        self.deleted.append(external_id)


def writing_service(provider, vault=None):
    write_back = BookingWriteBack(vault or StubVault(), provider_factory=lambda vendor, calendar_id: provider)
    return BookingService(service(), write_back=write_back)


def test_confirmed_booking_is_written_to_connected_calendar(db, make_connection, make_rule):
    make_rule("u1")
    make_connection(id="c1", user_id="u1")
    provider = RecordingProvider()

    booking = writing_service(provider).confirm(
        db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1", attendee_name="Ada", attendee_phone="+15550100")
    )
    assert booking.connection_id == "c1"
    assert booking.external_event_id == "remote-1"
    event = provider.created[0]
    assert event.title == "Appointment with Ada"
    assert event.start == at(9)
    assert event.end == at(9, 30)
    assert "Phone: +15550100" in event.description
    assert f"Confirmation code: {booking.confirmation_code}" in event.description


def test_cancel_removes_remote_event_and_local_mirror(db, make_connection, make_rule):
    make_rule("u1")
    conn = make_connection(id="c1", user_id="u1")
    provider = RecordingProvider()
    svc = writing_service(provider)
    booking = svc.confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    # The next sync brings the mirrored event back as a busy row
    add_event(db, conn, booking.external_event_id, at(9), at(9, 30))

    svc.cancel(db, booking.id)
    assert provider.deleted == ["remote-1"]
    assert db.query(models.CalendarEvent).count() == 0


def test_write_back_failure_keeps_booking(db, make_connection, make_rule):
    make_rule("u1")
    make_connection(id="c1", user_id="u1")
    provider = RecordingProvider(error=TransientError("GOOGLE_API_ERROR", "boom"))

    booking = writing_service(provider).confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    assert booking.status == "confirmed"
    assert booking.external_event_id is None
    assert db.query(models.InternalBooking).count() == 1


def test_write_back_skipped_without_active_connection(db, make_connection, make_rule):
    make_rule("u1")
    make_connection(id="c1", user_id="u1", status="disabled")
    provider = RecordingProvider()

    booking = writing_service(provider).confirm(db, BookingRequest(start=at(9), duration_minutes=30, person_id="u1"))
    assert provider.created == []
    assert booking.connection_id is None
