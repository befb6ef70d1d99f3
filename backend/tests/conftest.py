import os, sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Worker threads open their own sessions, so tests use a file-backed SQLite DB
_db_dir = tempfile.mkdtemp(prefix="slotsync-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{os.path.join(_db_dir, 'test.db')}")
os.environ.setdefault("APP_ENCRYPTION_KEY", Fernet.generate_key().decode())

# Put backend/ first on sys.path so the local slotsync package wins
backend_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if backend_root not in sys.path:
    sys.path.insert(0, backend_root)

from slotsync.main import app  # noqa: E402
from slotsync.db.session import engine, Base, SessionLocal  # noqa: E402
from slotsync.db import models  # noqa: E402
from slotsync.services.encryption_service import get_encryption_service  # noqa: E402


@pytest.fixture(scope="function")
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture(scope="function")  # fresh DB per test
def client(fresh_schema):
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def db(fresh_schema):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_connection(db):
    """Insert a provider connection with encrypted tokens."""
    enc = get_encryption_service()

    def _make(
        id="c1",
        user_id="u1",
        vendor="google",
        calendar_id="primary",
        access="access-token",
        refresh="refresh-token",
        expires_in=timedelta(hours=1),
        cursor=None,
        status="active",
        sync_enabled=True,
        last_full_sync_at=None,
    ):
        now = datetime.now(timezone.utc)
        conn = models.ProviderConnection(
            id=id,
            user_id=user_id,
            vendor=vendor,
            external_calendar_id=calendar_id,
            access_token_encrypted=enc.encrypt(access) if access else None,
            refresh_token_encrypted=enc.encrypt(refresh) if refresh else None,
            token_expires_at=now + expires_in if expires_in is not None else None,
            sync_cursor=cursor,
            status=status,
            sync_enabled=sync_enabled,
            last_full_sync_at=last_full_sync_at,
        )
        db.add(conn)
        db.commit()
        return conn

    return _make


@pytest.fixture
def make_rule(db):
    """Insert an active availability rule; weekdays 09:00-17:00 unless told otherwise."""
    def _make(user_id="u1", schedule=None, tz="UTC", **kwargs):
        if schedule is None:
            hours = [{"start": "09:00", "end": "17:00"}]
            schedule = {d: hours for d in ("monday", "tuesday", "wednesday", "thursday", "friday")}
        rule = models.AvailabilityRule(user_id=user_id, schedule=schedule, timezone=tz, is_default=True, **kwargs)
        db.add(rule)
        db.commit()
        return rule

    return _make
