from datetime import datetime, timezone

from slotsync.api.deps import get_availability_service
from slotsync.main import app
from slotsync.services.availability_service import AvailabilityService

EARLY = datetime(2025, 3, 1, tzinfo=timezone.utc)
WEEKDAY_HOURS = {"monday": [{"start": "09:00", "end": "17:00"}], "friday": [{"start": "09:00", "end": "12:00"}]}


def create(client, **overrides):
    payload = {"userId": "u1", "name": "Office hours", "schedule": WEEKDAY_HOURS}
    payload.update(overrides)
    return client.post("/availability/rules", json=payload)


def test_create_applies_defaults(client):
    r = create(client)
    assert r.status_code == 201
    body = r.json()
    assert body["id"]
    assert body["userId"] == "u1"
    assert body["timezone"] == "UTC"
    assert body["minBookingNotice"] == 60
    assert body["maxBookingNotice"] == 43200
    assert body["isDefault"] is False
    assert body["schedule"]["friday"] == [{"start": "09:00", "end": "12:00"}]


def test_only_one_default_rule_per_person(client):
    first = create(client, isDefault=True).json()
    second = create(client, name="Summer", isDefault=True).json()
    create(client, userId="u2", name="Other person", isDefault=True)

    r = client.get("/availability/rules", params={"userId": "u1"})
    assert r.status_code == 200
    rules = r.json()["rules"]
    assert r.json()["total"] == 2
    # Default first
    assert rules[0]["id"] == second["id"]
    assert rules[0]["isDefault"] is True
    assert rules[1]["isDefault"] is False

    r = client.put(f"/availability/rules/{first['id']}", json={"isDefault": True, "timezone": "Europe/Berlin"})
    assert r.status_code == 200
    assert r.json()["timezone"] == "Europe/Berlin"
    assert r.json()["name"] == "Office hours"
    assert client.get(f"/availability/rules/{second['id']}").json()["isDefault"] is False
    assert client.get("/availability/rules", params={"userId": "u2"}).json()["rules"][0]["isDefault"] is True


def test_rule_is_scoped_to_its_owner(client):
    rule = create(client).json()
    assert client.get(f"/availability/rules/{rule['id']}", params={"userId": "u1"}).status_code == 200
    r = client.get(f"/availability/rules/{rule['id']}", params={"userId": "u2"})
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "RULE_NOT_FOUND"
    assert client.delete(f"/availability/rules/{rule['id']}", params={"userId": "u2"}).status_code == 404


def test_delete_rule(client):
    rule = create(client).json()
    assert client.delete(f"/availability/rules/{rule['id']}").status_code == 204
    assert client.get(f"/availability/rules/{rule['id']}").status_code == 404
    assert client.get("/availability/rules", params={"userId": "u1"}).json()["total"] == 0


def test_invalid_rules_are_rejected(client):
    r = create(client, schedule={"funday": [{"start": "09:00", "end": "17:00"}]})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_WORKING_HOURS"

    r = create(client, schedule={"monday": [{"start": "17:00", "end": "09:00"}]})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_WORKING_HOURS"

    r = create(client, timezone="Nowhere/City")
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_TIMEZONE"

    r = create(client, dateOverrides=[{"date": "25/12/2025", "available": False}])
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_DATE"

    assert client.get("/availability/rules", params={"userId": "u1"}).json()["total"] == 0


def test_created_rule_drives_availability(client):
    create(client, isDefault=True, minBookingNotice=0, slotGranularity=60)
    app.dependency_overrides[get_availability_service] = lambda: AvailabilityService(clock=lambda: EARLY)
    r = client.post(
        "/availability/slots",
        json={"date": "2025-03-14", "duration": 60, "timezone": "UTC", "personIds": ["u1"]},
    )
    assert r.status_code == 200
    # Friday 09:00-12:00
    assert r.json()["total"] == 3
