"""One reconciliation pass for a single provider connection.

States: START -> TOKEN_ACQUIRED -> FETCHED -> DIFFED -> APPLIED -> CURSOR_COMMITTED,
or FAILED(reason) from any of them. Every error is caught here and reported
in the returned ``SyncResult``; nothing propagates to the scheduler.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..adapters.factory import build_provider
from ..config import get_settings
from ..db import models
from ..db.session import SessionLocal
from ..domain.enums import ConnectionStatus, FailureReason, SyncState
from ..domain.intervals import Interval, ensure_utc
from ..errors import (
    AuthError,
    ConnectionDisabledError,
    CursorInvalidError,
    DataError,
    NotFoundError,
    ProviderRejectedError,
    SyncTimeoutError,
    TransientError,
)
from ..metrics import SYNC_EVENTS_APPLIED, SYNC_RECORDS_SKIPPED, SYNC_RUN_COUNT, SYNC_RUN_DURATION
from ..ports.calendar_provider import CalendarProvider, RemoteEvent
from ..repositories.connection_repository import ConnectionRepository, SqlAlchemyConnectionRepository
from ..repositories.event_repository import EventRepository, SqlAlchemyEventRepository, same_content
from ..services.token_vault import TokenVault

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    connection_id: str
    success: bool = False
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    full_sync: bool = False
    state: SyncState = SyncState.START
    failure_reason: Optional[FailureReason] = None
    error: Optional[str] = None

    def fail(self, reason: FailureReason, error: str) -> "SyncResult":
        self.success = False
        self.state = SyncState.FAILED
        self.failure_reason = reason
        self.error = error
        return self


@dataclass
class SyncPlan:
    creates: List[RemoteEvent] = field(default_factory=list)
    updates: List[Tuple[models.CalendarEvent, RemoteEvent]] = field(default_factory=list)
    deletes: List[models.CalendarEvent] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


def diff_events(
    remote: Iterable[RemoteEvent],
    local: Dict[str, models.CalendarEvent],
    baseline: bool,
    window: Optional[Interval] = None,
) -> SyncPlan:
    """Compare fetched events with the local partition, keyed by external id.

    Local rows missing from the remote set are only deleted on a baseline
    fetch, and only when they overlap the baseline ``window`` (None means the
    listing was unbounded); incremental feeds report deletions explicitly.
    """
    latest: Dict[str, RemoteEvent] = {}
    for r in remote:
        latest[r.external_id] = r  # later pages win

    plan = SyncPlan()
    for ext_id, r in latest.items():
        existing = local.get(ext_id)
        if r.deleted:
            if existing is not None:
                plan.deletes.append(existing)
        elif existing is None:
            plan.creates.append(r)
        elif not same_content(existing, r):
            plan.updates.append((existing, r))

    if baseline:
        for ext_id, existing in local.items():
            if ext_id in latest:
                continue
            if window is not None and not window.overlaps(
                Interval(ensure_utc(existing.start_at), ensure_utc(existing.end_at))
            ):
                continue
            plan.deletes.append(existing)
    return plan


@dataclass
class _RunContext:
    connection_id: str
    vendor: str
    provider: CalendarProvider
    token: str
    deadline: Optional[float]


class SyncConnectionUseCase:
    def __init__(
        self,
        token_vault: TokenVault,
        provider_factory: Callable[[str, str], CalendarProvider] = build_provider,
        connection_repo: ConnectionRepository | None = None,
        event_repo: EventRepository | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        max_attempts: int | None = None,
        retry_base_seconds: float | None = None,
        full_resync_interval: timedelta | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ):
        settings = get_settings()
        self.token_vault = token_vault
        self.provider_factory = provider_factory
        self.connection_repo = connection_repo or SqlAlchemyConnectionRepository()
        self.event_repo = event_repo or SqlAlchemyEventRepository()
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts or settings.sync_max_attempts)
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None else settings.sync_retry_base_seconds
        )
        self.full_resync_interval = (
            full_resync_interval
            if full_resync_interval is not None
            else timedelta(hours=settings.full_resync_interval_hours)
        )
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def execute(self, connection_id: str, deadline: Optional[float] = None) -> SyncResult:
        """Run one pass. ``deadline`` is a ``time.monotonic()`` value."""
        result = SyncResult(connection_id=connection_id)
        started = time.monotonic()
        vendor = "unknown"
        with self.session_factory() as db:
            try:
                conn = self.connection_repo.get(db, connection_id)
                if conn is None:
                    raise NotFoundError("CONNECTION_NOT_FOUND", f"connection {connection_id} not found")
                vendor = conn.vendor
                self._run(db, conn, result, deadline)
            except NotFoundError as e:
                result.fail(FailureReason.NOT_FOUND, e.message)
            except ConnectionDisabledError as e:
                result.fail(FailureReason.DISABLED, e.message)
            except AuthError as e:
                result.fail(FailureReason.AUTH, e.message)
                self._record_failure(db, connection_id, f"reconnect required: {e.message}", ConnectionStatus.ERROR)
            except SyncTimeoutError as e:
                result.fail(FailureReason.TIMEOUT, e.message)
                self._record_failure(db, connection_id, e.message)
            except TransientError as e:
                result.fail(FailureReason.TRANSIENT, e.message)
                self._record_failure(db, connection_id, e.message)
            except CursorInvalidError as e:
                result.fail(FailureReason.TRANSIENT, e.message)
                self._record_failure(db, connection_id, e.message)
            except ProviderRejectedError as e:
                result.fail(FailureReason.REJECTED, e.message)
                self._record_failure(db, connection_id, e.message)
            except SQLAlchemyError as e:
                logger.exception("Applying changes failed for connection %s", connection_id)
                result.fail(FailureReason.APPLY, f"apply failed: {e}")
                self._record_failure(db, connection_id, result.error)
            except Exception as e:
                logger.exception("Unexpected sync failure for connection %s", connection_id)
                result.fail(FailureReason.INTERNAL, str(e) or e.__class__.__name__)
                self._record_failure(db, connection_id, result.error)

        outcome = "success" if result.success else (result.failure_reason.value if result.failure_reason else "failed")
        SYNC_RUN_COUNT.labels(vendor=vendor, outcome=outcome).inc()
        SYNC_RUN_DURATION.labels(vendor=vendor).observe(time.monotonic() - started)
        if result.success:
            logger.info(
                "Synced connection %s (%s): +%d ~%d -%d skipped=%d full=%s",
                connection_id, vendor, result.created, result.updated, result.deleted,
                result.skipped, result.full_sync,
            )
        else:
            logger.warning(
                "Sync failed for connection %s (%s) in state %s: %s",
                connection_id, vendor, result.failure_reason.value if result.failure_reason else "?", result.error,
            )
        return result

    # --- state machine steps ---

    def _run(self, db: Session, conn: models.ProviderConnection, result: SyncResult, deadline: Optional[float]) -> None:
        if conn.status == ConnectionStatus.DISABLED.value:
            raise ConnectionDisabledError()
        token = self.token_vault.get_valid_token(conn.id)
        result.state = SyncState.TOKEN_ACQUIRED
        ctx = _RunContext(
            connection_id=conn.id,
            vendor=conn.vendor,
            provider=self.provider_factory(conn.vendor, conn.external_calendar_id),
            token=token,
            deadline=deadline,
        )

        full = conn.sync_cursor is None or self._baseline_due(conn)
        try:
            items, next_cursor, window = self._fetch_all(ctx, None if full else conn.sync_cursor)
        except CursorInvalidError:
            logger.info("Cursor rejected for connection %s, performing full resync", conn.id)
            full = True
            items, next_cursor, window = self._fetch_all(ctx, None)
        result.full_sync = full
        result.state = SyncState.FETCHED

        remote, skipped = self._parse(ctx, items)
        result.skipped = skipped
        plan = diff_events(remote, self.event_repo.partition(db, conn.id), baseline=full, window=window)
        result.state = SyncState.DIFFED

        self._check_deadline(deadline)
        self._apply(db, conn, plan, result)
        result.state = SyncState.APPLIED

        self._check_deadline(deadline)
        self.connection_repo.commit_cursor(db, conn, next_cursor, self._clock(), full)
        result.state = SyncState.CURSOR_COMMITTED
        result.success = True

    def _fetch_all(
        self, ctx: _RunContext, cursor: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], Optional[str], Optional[Interval]]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        window: Optional[Interval] = None
        while True:
            self._check_deadline(ctx.deadline)
            page = self._fetch_page(ctx, cursor, page_token)
            if not page.cursor_valid:
                if cursor is None:
                    raise TransientError("BASELINE_REJECTED", "vendor rejected a baseline listing")
                raise CursorInvalidError()
            if window is None and page.window_start and page.window_end:
                window = Interval(ensure_utc(page.window_start), ensure_utc(page.window_end))
            items.extend(page.items)
            if not page.next_page_token:
                return items, page.next_cursor, window
            page_token = page.next_page_token

    def _fetch_page(self, ctx: _RunContext, cursor: Optional[str], page_token: Optional[str]):
        attempt = 0
        refreshed = False
        while True:
            try:
                return ctx.provider.list_events(ctx.token, cursor, page_token)
            except AuthError:
                # One forced refresh covers tokens revoked early by the vendor.
                if refreshed:
                    raise
                ctx.token = self.token_vault.force_refresh(ctx.connection_id)
                refreshed = True
            except TransientError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise
                delay = self.retry_base_seconds * (2 ** (attempt - 1))
                if e.retry_after:
                    delay = max(delay, e.retry_after)
                logger.warning(
                    "Fetch for connection %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                    ctx.connection_id, e.code, delay, attempt + 1, self.max_attempts,
                )
                self._sleep_within(delay, ctx.deadline)

    def _parse(self, ctx: _RunContext, items: List[Dict[str, Any]]) -> Tuple[List[RemoteEvent], int]:
        parsed: List[RemoteEvent] = []
        skipped = 0
        for raw in items:
            try:
                ev = ctx.provider.parse_event(raw)
            except DataError as e:
                skipped += 1
                logger.warning("Skipping malformed record on connection %s: %s", ctx.connection_id, e.message)
                continue
            if not ev.deleted:
                ev = RemoteEvent(
                    external_id=ev.external_id,
                    start=ensure_utc(ev.start),
                    end=ensure_utc(ev.end),
                    busy=ev.busy,
                    etag=ev.etag,
                    title=ev.title,
                    all_day=ev.all_day,
                )
            parsed.append(ev)
        if skipped:
            SYNC_RECORDS_SKIPPED.labels(vendor=ctx.vendor).inc(skipped)
        return parsed, skipped

    def _apply(self, db: Session, conn: models.ProviderConnection, plan: SyncPlan, result: SyncResult) -> None:
        # One transaction per connection; a failure leaves the store as it was.
        for remote in plan.creates:
            self.event_repo.create(db, conn, remote)
        for existing, remote in plan.updates:
            self.event_repo.update(db, existing, remote)
        for existing in plan.deletes:
            self.event_repo.delete(db, existing)
        db.commit()

        result.created, result.updated, result.deleted = len(plan.creates), len(plan.updates), len(plan.deletes)
        for kind, n in (("created", result.created), ("updated", result.updated), ("deleted", result.deleted)):
            if n:
                SYNC_EVENTS_APPLIED.labels(kind=kind).inc(n)

    # --- helpers ---

    def _baseline_due(self, conn: models.ProviderConnection) -> bool:
        if self.full_resync_interval <= timedelta(0):
            return False
        if conn.last_full_sync_at is None:
            return True
        return self._clock() - ensure_utc(conn.last_full_sync_at) >= self.full_resync_interval

    @staticmethod
    def _check_deadline(deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise SyncTimeoutError()

    def _sleep_within(self, delay: float, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() + delay >= deadline:
            raise SyncTimeoutError("backoff would exceed the run deadline")
        self._sleep(delay)

    def _record_failure(
        self,
        db: Session,
        connection_id: str,
        message: str,
        status: ConnectionStatus | None = None,
    ) -> None:
        try:
            db.rollback()
            if status is ConnectionStatus.ERROR:
                self.connection_repo.mark_error(db, connection_id, message)
            else:
                self.connection_repo.record_failure(db, connection_id, message, status.value if status else None)
        except SQLAlchemyError:
            logger.exception("Could not record sync failure for connection %s", connection_id)
