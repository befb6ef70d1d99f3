"""Fan-out of sync runs across provider connections.

Runs go through a bounded worker pool. Each run executes on its own thread
so the waiting worker can abandon it at its deadline; the abandoned run
still checks the same deadline before committing its cursor, so its cursor
stays at the pre-run value. A run holds one of ``max_concurrency`` slots
until its thread exits, so abandoned runs still count against the limit.
Runs are single-flight per connection: a second request for a connection
already syncing waits on the in-flight result.
"""
from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.session import SessionLocal
from ..domain.enums import FailureReason
from ..repositories.connection_repository import ConnectionRepository, SqlAlchemyConnectionRepository
from ..services.single_flight import SingleFlight
from .sync_connection import SyncConnectionUseCase, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class SyncPassSummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: List[Dict[str, Optional[str]]] = field(default_factory=list)
    results: List[SyncResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_results(cls, results: List[SyncResult], started_at: datetime, finished_at: datetime) -> "SyncPassSummary":
        ordered = sorted(results, key=lambda r: r.connection_id)
        return cls(
            attempted=len(ordered),
            succeeded=sum(1 for r in ordered if r.success),
            failed=sum(1 for r in ordered if not r.success),
            created=sum(r.created for r in ordered),
            updated=sum(r.updated for r in ordered),
            deleted=sum(r.deleted for r in ordered),
            errors=[
                {
                    "connectionId": r.connection_id,
                    "reason": r.failure_reason.value if r.failure_reason else None,
                    "error": r.error,
                }
                for r in ordered
                if not r.success
            ],
            results=ordered,
            started_at=started_at,
            finished_at=finished_at,
        )


class SyncScheduler:
    def __init__(
        self,
        engine: SyncConnectionUseCase,
        connection_repo: ConnectionRepository | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        max_concurrency: int | None = None,
        run_timeout: float | None = None,
        interval: float | None = None,
    ):
        settings = get_settings()
        self.engine = engine
        self.connection_repo = connection_repo or SqlAlchemyConnectionRepository()
        self.session_factory = session_factory
        self.max_concurrency = max(1, max_concurrency or settings.sync_max_concurrency)
        self.run_timeout = run_timeout if run_timeout is not None else settings.sync_run_timeout_seconds
        self.interval = interval if interval is not None else settings.sync_interval_seconds
        self._flights: SingleFlight[SyncResult] = SingleFlight()
        self._pool = ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="sync-worker")
        self._slots = threading.BoundedSemaphore(self.max_concurrency)
        self._stop = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None

    # --- operations ---

    def run_pass(self) -> SyncPassSummary:
        """Sync every active connection; one connection's failure never aborts the batch."""
        started_at = datetime.now(timezone.utc)
        with self.session_factory() as db:
            connection_ids = [c.id for c in self.connection_repo.list_syncable(db)]
        logger.info("Starting sync pass over %d connections", len(connection_ids))

        futures = {self._pool.submit(self._run_with_deadline, cid): cid for cid in connection_ids}
        results: List[SyncResult] = []
        for fut in as_completed(futures):
            cid = futures[fut]
            try:
                results.append(fut.result())
            except Exception as e:  # pragma: no cover - _run_with_deadline already guards
                logger.exception("Sync worker crashed for connection %s", cid)
                results.append(SyncResult(connection_id=cid).fail(FailureReason.INTERNAL, str(e)))

        summary = SyncPassSummary.from_results(results, started_at, datetime.now(timezone.utc))
        logger.info(
            "Sync pass finished: attempted=%d succeeded=%d failed=%d created=%d updated=%d deleted=%d",
            summary.attempted, summary.succeeded, summary.failed,
            summary.created, summary.updated, summary.deleted,
        )
        return summary

    def trigger(self, connection_id: str) -> SyncResult:
        """Manual single-connection sync; skips the pool queue, keeps the deadline."""
        return self._run_with_deadline(connection_id)

    # --- periodic loop ---

    def start(self) -> None:
        if self._loop_thread and self._loop_thread.is_alive():
            return
        self._stop.clear()
        self._loop_thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._loop_thread.start()
        logger.info("Sync scheduler started (interval=%ss, concurrency=%d)", self.interval, self.max_concurrency)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._loop_thread:
            self._loop_thread.join(timeout=timeout)
            self._loop_thread = None
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_pass()
            except Exception:
                logger.exception("Scheduled sync pass failed")
            self._stop.wait(self.interval)

    # --- internals ---

    def _run_with_deadline(self, connection_id: str) -> SyncResult:
        deadline = time.monotonic() + self.run_timeout
        fut, leader = self._flights.claim(connection_id)
        if leader:
            if self._slots.acquire(timeout=max(0.0, deadline - time.monotonic())):
                runner = threading.Thread(
                    target=self._run_in_slot,
                    args=(connection_id, fut, deadline),
                    name=f"sync-{connection_id}",
                    daemon=True,
                )
                runner.start()
            else:
                logger.warning("No free sync slot for connection %s before its deadline", connection_id)
                self._flights.run(connection_id, fut, lambda: self._timed_out(connection_id))
        else:
            logger.info("Connection %s already syncing, joining in-flight run", connection_id)
        try:
            return fut.result(timeout=max(0.0, deadline - time.monotonic()))
        except FuturesTimeout:
            logger.warning("Sync run for connection %s abandoned after %.1fs", connection_id, self.run_timeout)
            return self._timed_out(connection_id)
        except Exception as e:
            logger.exception("Sync run crashed for connection %s", connection_id)
            return SyncResult(connection_id=connection_id).fail(FailureReason.INTERNAL, str(e))

    def _run_in_slot(self, connection_id: str, fut, deadline: float) -> None:
        try:
            self._flights.run(connection_id, fut, lambda: self.engine.execute(connection_id, deadline))
        finally:
            self._slots.release()

    def _timed_out(self, connection_id: str) -> SyncResult:
        return SyncResult(connection_id=connection_id).fail(
            FailureReason.TIMEOUT, f"run exceeded {self.run_timeout:.0f}s deadline"
        )
