from datetime import datetime, timedelta, timezone

from slotsync.api.deps import get_disconnect_usecase, get_sync_scheduler
from slotsync.config import get_settings
from slotsync.db import models
from slotsync.main import app
from slotsync.ports.calendar_provider import EventPage, RemoteEvent
from slotsync.usecases.disconnect_connection import DisconnectConnectionUseCase
from slotsync.usecases.sync_connection import SyncConnectionUseCase
from slotsync.usecases.sync_scheduler import SyncScheduler


class StaticVault:
    def get_valid_token(self, connection_id):
        return "token"

    def force_refresh(self, connection_id):
        return "token"

    def revoke(self, connection_id):
        return True


class StaticProvider:
    vendor = "google"

    def list_events(self, token, cursor, page_token=None):
        return EventPage(items=[{"id": "e1"}, {"id": "e2"}], next_cursor="cursor-1")

    def parse_event(self, item):
        start = datetime(2025, 3, 10, 9, tzinfo=timezone.utc)
        return RemoteEvent(external_id=item["id"], start=start, end=start + timedelta(minutes=30))


def use_fake_scheduler():
    scheduler = SyncScheduler(
        SyncConnectionUseCase(StaticVault(), provider_factory=lambda vendor, calendar_id: StaticProvider()),
        max_concurrency=2,
        run_timeout=5,
    )
    app.dependency_overrides[get_sync_scheduler] = lambda: scheduler
    return scheduler


def test_manual_sync_reports_counts(client, make_connection):
    make_connection()
    scheduler = use_fake_scheduler()
    try:
        r = client.post("/sync/connections/c1")
    finally:
        scheduler.stop()
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["createdCount"] == 2
    assert body["state"] == "cursor_committed"
    assert body["error"] is None


def test_manual_sync_of_unknown_connection_reports_failure(client):
    scheduler = use_fake_scheduler()
    try:
        r = client.post("/sync/connections/nope")
    finally:
        scheduler.stop()
    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["reason"] == "not_found"


def test_manual_sync_of_disabled_connection_keeps_it_disabled(client, make_connection, db):
    make_connection(status="disabled")
    scheduler = use_fake_scheduler()
    try:
        r = client.post("/sync/connections/c1")
    finally:
        scheduler.stop()
    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["reason"] == "disabled"
    db.expire_all()
    conn = db.get(models.ProviderConnection, "c1")
    assert conn.status == "disabled"
    assert conn.last_error is None


def test_scheduled_pass_requires_cron_secret(client, make_connection, monkeypatch):
    make_connection()
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    get_settings.cache_clear()
    scheduler = use_fake_scheduler()
    try:
        denied = client.post("/sync/run")
        assert denied.status_code == 401
        ok = client.post("/sync/run", headers={"Authorization": "Bearer s3cret"})
    finally:
        scheduler.stop()
        monkeypatch.delenv("CRON_SECRET")
        get_settings.cache_clear()
    assert ok.status_code == 200
    body = ok.json()
    assert body["attempted"] == 1
    assert body["succeeded"] == 1
    assert body["createdCount"] == 2
    assert body["errors"] == []


def test_list_and_disconnect_connections(client, make_connection):
    make_connection(id="c1", user_id="u1")
    make_connection(id="c2", user_id="u2")
    app.dependency_overrides[get_disconnect_usecase] = lambda: DisconnectConnectionUseCase(StaticVault())

    listed = client.get("/connections", params={"userId": "u1"}).json()["connections"]
    assert [c["id"] for c in listed] == ["c1"]
    assert "accessToken" not in listed[0]
    assert listed[0]["status"] == "active"

    r = client.delete("/connections/c1", params={"userId": "u1"})
    assert r.status_code == 200
    assert r.json()["revoked"] is True
    assert client.get("/connections", params={"userId": "u1"}).json()["connections"] == []

    missing = client.delete("/connections/c1")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "CONNECTION_NOT_FOUND"


def test_health_and_metrics(client):
    assert client.get("/healthz").json()["status"] == "ok"
    m = client.get("/metrics")
    assert m.status_code == 200
    assert "slotsync_requests_total" in m.text
