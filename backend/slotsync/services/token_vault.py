"""Token vault: encrypted OAuth credentials per provider connection.

Each connection gets an explicit ``_TokenRecord`` owning its refresh lock and
the in-flight refresh future. Concurrent callers for the same connection wait
on that one future, so the vendor sees a single refresh request. The record
lock is only held to claim or clear the in-flight slot, never across the
network call.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..adapters.factory import build_credential_source
from ..config import get_settings
from ..db import models
from ..db.session import SessionLocal
from ..domain.enums import ConnectionStatus
from ..domain.intervals import ensure_utc
from ..errors import AuthError, ConnectionDisabledError, NotFoundError
from ..metrics import TOKEN_REFRESH_COUNT
from ..ports.credential_source import CredentialSource
from .encryption_service import EncryptionService, get_encryption_service

logger = logging.getLogger(__name__)


@dataclass
class _TokenRecord:
    connection_id: str
    lock: threading.Lock = field(default_factory=threading.Lock)
    inflight: Optional[Future] = None


class TokenVault:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        credential_sources: Callable[[str], CredentialSource] = build_credential_source,
        encryption: EncryptionService | None = None,
        refresh_margin: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._credential_sources = credential_sources
        self._encryption = encryption or get_encryption_service()
        self._margin = refresh_margin if refresh_margin is not None else timedelta(
            seconds=get_settings().token_refresh_margin_seconds
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: Dict[str, _TokenRecord] = {}
        self._records_lock = threading.Lock()

    # --- public contract ---

    def get_valid_token(self, connection_id: str) -> str:
        """Return a usable access token, refreshing proactively near expiry."""
        with self._session_factory() as db:
            conn = self._load(db, connection_id)
            if not self._is_stale(conn):
                return self._decrypt(conn.access_token_encrypted, "access")
        return self._refresh(connection_id, forced=False)

    def force_refresh(self, connection_id: str) -> str:
        return self._refresh(connection_id, forced=True)

    def store_tokens(
        self,
        db: Session,
        connection: models.ProviderConnection,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> None:
        """Encrypt and attach tokens (used by the OAuth exchange collaborator and tests)."""
        connection.access_token_encrypted = self._encryption.encrypt(access_token)
        if refresh_token:
            connection.refresh_token_encrypted = self._encryption.encrypt(refresh_token)
        connection.token_expires_at = expires_at
        connection.updated_at = self._clock()

    def revoke(self, connection_id: str) -> bool:
        """Best-effort revocation with the vendor. Never raises."""
        try:
            with self._session_factory() as db:
                conn = self._load(db, connection_id)
                vendor = conn.vendor
                secret = conn.refresh_token_encrypted or conn.access_token_encrypted
            if not secret:
                return False
            self._credential_sources(vendor).revoke(self._decrypt(secret, "revoke"))
            return True
        except Exception as e:
            logger.warning("Token revocation failed for connection %s: %s", connection_id, e)
            return False

    # --- internals ---

    def _record(self, connection_id: str) -> _TokenRecord:
        with self._records_lock:
            rec = self._records.get(connection_id)
            if rec is None:
                rec = _TokenRecord(connection_id)
                self._records[connection_id] = rec
            return rec

    def _refresh(self, connection_id: str, forced: bool) -> str:
        rec = self._record(connection_id)
        with rec.lock:
            fut = rec.inflight
            leader = fut is None
            if leader:
                fut = Future()
                fut.set_running_or_notify_cancel()
                rec.inflight = fut
        if leader:
            try:
                fut.set_result(self._do_refresh(connection_id, forced))
            except Exception as e:
                fut.set_exception(e)
            finally:
                with rec.lock:
                    rec.inflight = None
        return fut.result()

    def _do_refresh(self, connection_id: str, forced: bool) -> str:
        with self._session_factory() as db:
            conn = self._load(db, connection_id)
            vendor = conn.vendor
            # A refresh that finished just before we claimed the slot already fixed this.
            if not forced and not self._is_stale(conn):
                return self._decrypt(conn.access_token_encrypted, "access")
            if not conn.refresh_token_encrypted:
                err = AuthError("TOKEN_EXPIRED", "Token expired and no refresh token available")
                self._mark_reconnect_required(db, conn, err)
                raise err
            refresh_token = self._decrypt(conn.refresh_token_encrypted, "refresh")

        logger.info("Refreshing %s token for connection %s", vendor, connection_id)
        try:
            refreshed = self._credential_sources(vendor).refresh(refresh_token)
        except AuthError as e:
            TOKEN_REFRESH_COUNT.labels(vendor=vendor, outcome="rejected").inc()
            with self._session_factory() as db:
                conn = db.get(models.ProviderConnection, connection_id)
                if conn is not None:
                    self._mark_reconnect_required(db, conn, e)
            raise
        except Exception:
            TOKEN_REFRESH_COUNT.labels(vendor=vendor, outcome="error").inc()
            raise
        TOKEN_REFRESH_COUNT.labels(vendor=vendor, outcome="success").inc()

        with self._session_factory() as db:
            conn = self._load(db, connection_id)
            self.store_tokens(db, conn, refreshed.access_token, refreshed.refresh_token, refreshed.expires_at)
            db.commit()
        return refreshed.access_token

    def _is_stale(self, conn: models.ProviderConnection) -> bool:
        if not conn.access_token_encrypted or conn.token_expires_at is None:
            return True
        return ensure_utc(conn.token_expires_at) - self._margin <= self._clock()

    def _decrypt(self, value: str, kind: str) -> str:
        try:
            return self._encryption.decrypt(value)
        except ValueError:
            raise AuthError("TOKEN_DECRYPT_FAILED", f"Failed to decrypt {kind} token")

    def _load(self, db: Session, connection_id: str) -> models.ProviderConnection:
        conn = db.get(models.ProviderConnection, connection_id)
        if conn is None:
            raise NotFoundError("CONNECTION_NOT_FOUND", f"connection {connection_id} not found")
        if conn.status == ConnectionStatus.DISABLED.value:
            raise ConnectionDisabledError()
        return conn

    def _mark_reconnect_required(self, db: Session, conn: models.ProviderConnection, err: AuthError) -> None:
        logger.warning("Connection %s needs reconnect: %s", conn.id, err.message)
        conn.status = ConnectionStatus.ERROR.value
        conn.last_error = f"reconnect required: {err.message}"
        conn.updated_at = self._clock()
        db.commit()
