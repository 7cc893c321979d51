"""Tests for the keyed work queue."""

from __future__ import annotations

import threading
from collections.abc import Callable

import pytest
from pydantic import ValidationError

from cluster_import.controller.queue import BackoffConfig, WorkQueue


class FakeTimer:
    """Stands in for threading.Timer; fires only when told to."""

    def __init__(self, delay: float, fn: Callable[[], None]) -> None:
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fn()


@pytest.fixture()
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture()
def queue(timers: list[FakeTimer]) -> WorkQueue:
    def factory(delay: float, fn: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, fn)
        timers.append(timer)
        return timer

    return WorkQueue(BackoffConfig(base_seconds=0.01, max_seconds=1.0), _timer_factory=factory)


class TestDedup:
    def test_duplicate_adds_collapse(self, queue: WorkQueue) -> None:
        queue.add("c1")
        queue.add("c1")
        queue.add("c2")

        assert len(queue) == 2
        assert queue.get(timeout=0) == "c1"
        assert queue.get(timeout=0) == "c2"
        assert queue.get(timeout=0) is None

    def test_readd_while_processing_is_deferred(self, queue: WorkQueue) -> None:
        queue.add("c1")
        key = queue.get(timeout=0)
        queue.add("c1")

        # not handed out to a second worker
        assert queue.get(timeout=0) is None

        queue.done(key)
        assert queue.get(timeout=0) == "c1"

    def test_done_without_readd_drops_key(self, queue: WorkQueue) -> None:
        queue.add("c1")
        queue.done(queue.get(timeout=0))
        assert len(queue) == 0

    def test_get_blocks_until_add(self, queue: WorkQueue) -> None:
        got: list[str | None] = []
        worker = threading.Thread(target=lambda: got.append(queue.get(timeout=5)))
        worker.start()
        queue.add("c1")
        worker.join(timeout=5)
        assert got == ["c1"]


class TestBackoff:
    def test_delay_doubles_per_failure(self, queue: WorkQueue) -> None:
        assert queue.when("c1") == pytest.approx(0.01)
        assert queue.when("c1") == pytest.approx(0.02)
        assert queue.when("c1") == pytest.approx(0.04)
        assert queue.num_requeues("c1") == 3

    def test_delay_is_capped(self, queue: WorkQueue) -> None:
        for _ in range(20):
            delay = queue.when("c1")
        assert delay == 1.0

    def test_forget_resets(self, queue: WorkQueue) -> None:
        queue.when("c1")
        queue.when("c1")
        queue.forget("c1")
        assert queue.num_requeues("c1") == 0
        assert queue.when("c1") == pytest.approx(0.01)

    def test_keys_back_off_independently(self, queue: WorkQueue) -> None:
        queue.when("c1")
        queue.when("c1")
        assert queue.when("c2") == pytest.approx(0.01)

    def test_add_rate_limited_schedules_timer(
        self, queue: WorkQueue, timers: list[FakeTimer],
    ) -> None:
        delay = queue.add_rate_limited("c1")

        assert delay == pytest.approx(0.01)
        assert len(timers) == 1
        assert timers[0].started
        assert timers[0].daemon
        assert len(queue) == 0

        timers[0].fire()
        assert queue.get(timeout=0) == "c1"

    def test_zero_delay_adds_immediately(self, queue: WorkQueue, timers: list[FakeTimer]) -> None:
        queue.add_after("c1", 0)
        assert timers == []
        assert queue.get(timeout=0) == "c1"

    def test_invalid_backoff_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BackoffConfig(base_seconds=0)


class TestShutdown:
    def test_get_returns_none(self, queue: WorkQueue) -> None:
        queue.shutdown()
        assert queue.shutting_down
        assert queue.get(timeout=1) is None

    def test_add_after_shutdown_is_ignored(self, queue: WorkQueue) -> None:
        queue.shutdown()
        queue.add("c1")
        assert len(queue) == 0

    def test_pending_timers_are_cancelled(
        self, queue: WorkQueue, timers: list[FakeTimer],
    ) -> None:
        queue.add_rate_limited("c1")
        queue.shutdown()
        assert timers[0].cancelled

    def test_shutdown_wakes_blocked_get(self, queue: WorkQueue) -> None:
        got: list[str | None] = ["sentinel"]

        def worker() -> None:
            got[0] = queue.get()

        thread = threading.Thread(target=worker)
        thread.start()
        queue.shutdown()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert got == [None]
