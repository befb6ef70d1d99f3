"""Keyed single-flight execution.

At most one call per key runs at a time; callers arriving while it runs get
the same ``Future``. The internal lock only guards the in-flight table and is
never held while the call itself runs.
"""
from __future__ import annotations
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Generic, Hashable, Tuple, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    def __init__(self):
        self._lock = threading.Lock()
        self._inflight: Dict[Hashable, Future] = {}

    def claim(self, key: Hashable) -> Tuple[Future, bool]:
        """Return (future, leader). The leader must later call ``run``."""
        with self._lock:
            fut = self._inflight.get(key)
            if fut is not None:
                return fut, False
            fut = Future()
            fut.set_running_or_notify_cancel()
            self._inflight[key] = fut
            return fut, True

    def run(self, key: Hashable, fut: Future, fn: Callable[[], T]) -> None:
        """Execute ``fn`` as leader for ``key`` and publish its outcome."""
        try:
            result = fn()
        except BaseException as e:  # propagate to every waiter
            with self._lock:
                self._inflight.pop(key, None)
            fut.set_exception(e)
            return
        with self._lock:
            self._inflight.pop(key, None)
        fut.set_result(result)

    def do(self, key: Hashable, fn: Callable[[], T], timeout: float | None = None) -> T:
        """Run ``fn`` once per key in the calling thread, or wait on the in-flight call."""
        fut, leader = self.claim(key)
        if leader:
            self.run(key, fut, fn)
        return fut.result(timeout=timeout)

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._inflight
