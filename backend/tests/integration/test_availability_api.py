from datetime import datetime, timezone

from slotsync.api.deps import get_availability_service, get_booking_service
from slotsync.main import app
from slotsync.services.availability_service import AvailabilityService
from slotsync.services.booking_service import BookingService

EARLY = datetime(2025, 3, 1, tzinfo=timezone.utc)


def pinned_clock():
    # Slots on 2025-03-10 must not be filtered as "in the past"
    app.dependency_overrides[get_availability_service] = lambda: AvailabilityService(clock=lambda: EARLY)
    app.dependency_overrides[get_booking_service] = lambda: BookingService(AvailabilityService(clock=lambda: EARLY))


def test_slot_query_returns_slots_and_voice_summary(client, make_rule):
    make_rule("u1", schedule={"monday": [{"start": "09:00", "end": "11:00"}]})
    pinned_clock()

    r = client.post("/availability/slots", json={"date": "2025-03-10", "duration": 30, "timezone": "UTC", "personIds": ["u1"]})
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 4
    assert data["timezone"] == "UTC"
    assert data["slots"][0]["personId"] == "u1"
    assert data["slots"][0]["start"].startswith("2025-03-10T09:00:00")
    assert data["summary"]["firstAvailable"] == "9:00 AM"
    assert data["summary"]["message"].startswith("I have 4 available slots on 2025-03-10.")


def test_slot_query_rejects_bad_input(client):
    r = client.post("/availability/slots", json={"date": "10/03/2025", "duration": 30})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_DATE"

    r = client.post("/availability/slots", json={"date": "2025-03-10", "duration": 30, "timezone": "Nowhere/City"})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_TIMEZONE"


def test_booking_then_conflict(client, make_rule):
    make_rule("u1")
    pinned_clock()
    payload = {"start": "2025-03-10T10:00:00Z", "duration": 30, "personId": "u1", "attendeeName": "Grace"}

    r = client.post("/bookings", json=payload)
    assert r.status_code == 201
    body = r.json()
    assert body["personId"] == "u1"
    assert body["status"] == "confirmed"
    assert len(body["confirmationCode"]) == 8

    r2 = client.post("/bookings", json=payload)
    assert r2.status_code == 409
    assert r2.json()["detail"]["code"] == "SLOT_UNAVAILABLE"

    # The booked slot disappears from the next query
    r3 = client.post("/availability/slots", json={"date": "2025-03-10", "duration": 30, "timezone": "UTC", "personIds": ["u1"]})
    starts = [s["start"][:19] for s in r3.json()["slots"]]
    assert "2025-03-10T10:00:00" not in starts


def test_cancel_booking_reopens_slot(client, make_rule):
    make_rule("u1")
    pinned_clock()
    payload = {"start": "2025-03-10T10:00:00Z", "duration": 30, "personId": "u1"}
    booking_id = client.post("/bookings", json=payload).json()["id"]

    r = client.delete(f"/bookings/{booking_id}")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    assert client.post("/bookings", json=payload).status_code == 201
    assert client.delete("/bookings/does-not-exist").status_code == 404


def test_booking_outside_hours_is_conflict(client, make_rule):
    make_rule("u1")
    pinned_clock()
    r = client.post("/bookings", json={"start": "2025-03-10T03:00:00Z", "duration": 30, "personId": "u1"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "OUTSIDE_WORKING_HOURS"
