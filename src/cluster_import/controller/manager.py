"""Controller — watches the hub, routes events and runs reconcile workers.

Lifecycle:
  1. One watch thread per source feeds events to ``dispatch``
  2. ``dispatch`` routes each event to a cluster name and enqueues it
  3. ``max_concurrent_reconciles`` workers pull names off the queue
  4. Failed reconciles go back on the queue with backoff
  5. ``stop`` cancels in-flight reconciles and drains the workers
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from cluster_import.constants import KLUSTERLET_WORKS_LABEL
from cluster_import.context import ControllerContext
from cluster_import.controller.queue import BackoffConfig, WorkQueue
from cluster_import.models import ResourceKind, WatchEvent
from cluster_import.reconcile.orchestrator import ClusterDeploymentReconciler
from cluster_import.router.router import EventRouter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchSource:
    """A resource kind to watch, optionally narrowed by labels."""

    kind: ResourceKind
    label_selector: dict[str, str] | None = None


WATCH_SOURCES: tuple[WatchSource, ...] = (
    WatchSource(ResourceKind.CLUSTER_DEPLOYMENT),
    WatchSource(ResourceKind.MANAGED_CLUSTER),
    WatchSource(ResourceKind.SECRET),
    WatchSource(ResourceKind.MANIFEST_WORK, {KLUSTERLET_WORKS_LABEL: "true"}),
)


class Controller:
    """Runs the router and the reconciler against a live store."""

    def __init__(
        self,
        ctx: ControllerContext,
        router: EventRouter | None = None,
        reconciler: ClusterDeploymentReconciler | None = None,
        queue: WorkQueue | None = None,
        sources: tuple[WatchSource, ...] = WATCH_SOURCES,
    ) -> None:
        self._ctx = ctx
        self._router = router or EventRouter(ctx.config.hosted_work_suffixes)
        self._reconciler = reconciler or ClusterDeploymentReconciler(ctx)
        self._queue = queue or WorkQueue(
            BackoffConfig(
                base_seconds=ctx.config.backoff_base_seconds,
                max_seconds=ctx.config.backoff_max_seconds,
            )
        )
        self._sources = sources
        self._threads: list[threading.Thread] = []

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def dispatch(self, event: WatchEvent) -> str | None:
        """Route *event* and enqueue the cluster it belongs to."""
        key = self._router.route(event)
        if key is not None:
            logger.debug("Enqueued %s for %s %s", key, event.kind, event.type)
            self._queue.add(key)
        return key

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile one key.  Returns False once the queue is shut down or empty."""
        key = self._queue.get(timeout=timeout)
        if key is None:
            return False

        try:
            result = self._reconciler.reconcile(key)
        except Exception:
            logger.exception("Reconcile of %s raised", key)
            self._queue.add_rate_limited(key)
        else:
            if result.error is not None:
                delay = self._queue.add_rate_limited(key)
                logger.error(
                    "Reconcile of %s failed, retrying in %.3fs: %s", key, delay, result.error,
                )
            elif result.requeue:
                self._queue.add_rate_limited(key)
            else:
                self._queue.forget(key)
        finally:
            self._queue.done(key)
        return True

    def start(self) -> None:
        """Start watch and worker threads."""
        for source in self._sources:
            self._spawn(f"watch-{source.kind}", self._watch, source)
        for i in range(self._ctx.config.max_concurrent_reconciles):
            self._spawn(f"worker-{i}", self._work)
        logger.info(
            "Controller started with %d workers", self._ctx.config.max_concurrent_reconciles,
        )

    def stop(self, timeout: float = 10.0) -> None:
        self._ctx.cancel.set()
        self._queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Controller stopped")

    # --- Private ---

    def _spawn(self, name: str, target: Callable[..., None], *args: object) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def _work(self) -> None:
        while not self._queue.shutting_down:
            self.process_next(timeout=1.0)

    def _watch(self, source: WatchSource) -> None:
        while not self._ctx.cancelled:
            try:
                for event in self._ctx.store.watch(
                    source.kind, stop=self._ctx.cancel, label_selector=source.label_selector,
                ):
                    self.dispatch(event)
            except Exception:
                logger.exception("Watch on %s failed, restarting", source.kind)
                self._ctx.cancel.wait(1.0)
