import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from slotsync.db import models
from slotsync.errors import AuthError, ConnectionDisabledError
from slotsync.ports.credential_source import RefreshedToken
from slotsync.services.encryption_service import get_encryption_service
from slotsync.services.token_vault import TokenVault


class FakeCredentialSource:
    def __init__(self, error=None, delay=0.0, rotate=False):
        self.error = error
        self.delay = delay
        self.rotate = rotate
        self.refresh_calls = 0
        self.revoked = []
        self._lock = threading.Lock()

    def refresh(self, refresh_token):
        with self._lock:
            self.refresh_calls += 1
            n = self.refresh_calls
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return RefreshedToken(
            access_token=f"fresh-{n}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            refresh_token="rotated-refresh" if self.rotate else None,
        )

    def revoke(self, token):
        if self.error:
            raise self.error
        self.revoked.append(token)


def make_vault(source):
    return TokenVault(credential_sources=lambda vendor: source, refresh_margin=timedelta(minutes=5))


def reload(db, connection_id="c1"):
    db.expire_all()
    return db.get(models.ProviderConnection, connection_id)


def test_valid_token_returned_without_refresh(db, make_connection):
    make_connection(access="still-good", expires_in=timedelta(hours=1))
    source = FakeCredentialSource()
    assert make_vault(source).get_valid_token("c1") == "still-good"
    assert source.refresh_calls == 0


def test_token_inside_margin_is_refreshed_and_stored_encrypted(db, make_connection):
    make_connection(access="old", expires_in=timedelta(minutes=2))
    source = FakeCredentialSource(rotate=True)
    token = make_vault(source).get_valid_token("c1")

    assert token == "fresh-1"
    conn = reload(db)
    enc = get_encryption_service()
    assert conn.access_token_encrypted != "fresh-1"
    assert enc.decrypt(conn.access_token_encrypted) == "fresh-1"
    assert enc.decrypt(conn.refresh_token_encrypted) == "rotated-refresh"


def test_concurrent_callers_share_one_refresh(db, make_connection):
    make_connection(expires_in=timedelta(seconds=-10))
    source = FakeCredentialSource(delay=0.2)
    vault = make_vault(source)
    results = []
    lock = threading.Lock()

    def worker():
        token = vault.get_valid_token("c1")
        with lock:
            results.append(token)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert source.refresh_calls == 1
    assert results == ["fresh-1"] * 8


def test_force_refresh_ignores_expiry(db, make_connection):
    make_connection(expires_in=timedelta(hours=1))
    source = FakeCredentialSource()
    assert make_vault(source).force_refresh("c1") == "fresh-1"
    assert source.refresh_calls == 1


def test_revoked_grant_marks_connection_for_reconnect(db, make_connection):
    make_connection(expires_in=timedelta(seconds=-10))
    source = FakeCredentialSource(error=AuthError("TOKEN_REFRESH_FAILED", "invalid_grant"))
    with pytest.raises(AuthError):
        make_vault(source).get_valid_token("c1")
    conn = reload(db)
    assert conn.status == "error"
    assert "reconnect required" in conn.last_error


def test_missing_refresh_token_fails_auth(db, make_connection):
    make_connection(refresh=None, expires_in=timedelta(seconds=-10))
    with pytest.raises(AuthError) as exc:
        make_vault(FakeCredentialSource()).get_valid_token("c1")
    assert exc.value.code == "TOKEN_EXPIRED"


def test_disabled_connection_refused(db, make_connection):
    make_connection(status="disabled")
    source = FakeCredentialSource()
    with pytest.raises(ConnectionDisabledError) as exc:
        make_vault(source).get_valid_token("c1")
    assert exc.value.code == "CONNECTION_DISABLED"
    assert not isinstance(exc.value, AuthError)
    assert source.refresh_calls == 0
    db.expire_all()
    assert db.get(models.ProviderConnection, "c1").status == "disabled"


def test_revoke_is_best_effort(db, make_connection):
    make_connection(refresh="refresh-secret")
    source = FakeCredentialSource()
    assert make_vault(source).revoke("c1") is True
    assert source.revoked == ["refresh-secret"]

    failing = FakeCredentialSource(error=RuntimeError("vendor down"))
    assert make_vault(failing).revoke("c1") is False
