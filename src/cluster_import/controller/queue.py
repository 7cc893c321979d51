"""Keyed work queue with per-key exponential backoff.

Guarantees the reconciler relies on:
- a key is queued at most once, however many events route to it
- a key handed out by ``get`` is not handed out again until ``done``;
  re-adds in the meantime are deferred, not dropped
- failed keys come back after ``base * 2**failures`` seconds (capped)
  until ``forget`` resets them

All state is guarded by a single condition variable.

Usage::

    queue = WorkQueue()
    queue.add("cluster-a")

    key = queue.get()
    try:
        ok = reconcile(key)
    finally:
        if ok:
            queue.forget(key)
        else:
            queue.add_rate_limited(key)
        queue.done(key)
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable

from pydantic import BaseModel, Field


class BackoffConfig(BaseModel):
    """Per-key retry backoff."""

    base_seconds: float = Field(0.005, gt=0)
    """Delay before the first retry."""

    max_seconds: float = Field(1000.0, gt=0)
    """Upper bound on any single delay."""


class WorkQueue:
    """Deduplicating, per-key serialized queue of cluster names."""

    def __init__(
        self,
        backoff: BackoffConfig | None = None,
        _timer_factory: Callable[[float, Callable[[], None]], threading.Timer] | None = None,
    ) -> None:
        self._backoff = backoff or BackoffConfig()
        self._timer_factory = _timer_factory or threading.Timer
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: set[threading.Timer] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                # picked up again by done()
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is available.

        Returns None on shutdown or when *timeout* expires.
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout,
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    # --- Rate limiting ---

    def when(self, key: str) -> float:
        """Return the next backoff delay for *key* and count the failure."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = self._backoff.base_seconds * (2 ** failures)
        return min(delay, self._backoff.max_seconds)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def add_rate_limited(self, key: str) -> float:
        """Re-add *key* after its backoff delay.  Returns the delay used."""
        delay = self.when(key)
        self.add_after(key, delay)
        return delay

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return

        with self._cond:
            if self._shutting_down:
                return
            timer: threading.Timer | None = None

            def _fire() -> None:
                with self._cond:
                    self._timers.discard(timer)
                self.add(key)

            timer = self._timer_factory(delay, _fire)
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
