"""ObjectStore protocol and the built-in InMemoryStore.

The ObjectStore protocol is the controller's only view of the hub's API:
point-in-time reads, label-selected lists, JSON merge patches and a watch
stream of (kind, old, new) events.  Any object with these methods satisfies
the protocol, no inheritance required.

Objects are plain Kubernetes-shaped dicts (camelCase).  ``get`` returns
``None`` for a missing object; absence is a normal state for the
controller, not an error.
"""

from __future__ import annotations

import copy
import itertools
import queue
import threading
from collections.abc import Iterator
from typing import Any, Protocol, runtime_checkable

from cluster_import.models import EventType, ResourceKind, WatchEvent


class StoreError(Exception):
    """Raised when the object store cannot complete a request."""


class NotFoundError(StoreError):
    """The object does not exist (HTTP 404)."""


class ConflictError(StoreError):
    """The object changed since it was read (HTTP 409)."""


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for hub object stores."""

    def get(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
    ) -> dict[str, Any] | None:
        """Return a snapshot of the object, or None if it doesn't exist."""
        ...

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Return snapshots of all matching objects."""
        ...

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        body: dict[str, Any],
        namespace: str | None = None,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        """Apply a JSON merge patch and return the patched object.

        A ``metadata.resourceVersion`` in *body* makes the patch
        conditional on it; a mismatch raises ConflictError.
        """
        ...

    def watch(
        self,
        kind: ResourceKind,
        stop: threading.Event | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> Iterator[WatchEvent]:
        """Yield change events until *stop* is set."""
        ...


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply an RFC 7386 JSON merge patch to *target* and return the result."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def matches_labels(obj: dict[str, Any], selector: dict[str, str] | None) -> bool:
    """Equality-based label selection (all pairs must match)."""
    if not selector:
        return True
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in selector.items())


class InMemoryStore:
    """Dict-backed ObjectStore.

    Useful for tests, dry runs and the ``reconcile`` CLI against fixtures.
    Bumps ``resourceVersion`` on every write, honours optimistic
    concurrency in patches, records every patch in ``patches`` and
    publishes watch events to active watchers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[tuple[ResourceKind, str, str], dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._watchers: list[tuple[ResourceKind, queue.Queue[WatchEvent]]] = []
        self.patches: list[dict[str, Any]] = []

    # --- Fixture helpers ---

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Create or replace an object, emitting a create/update event."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        with self._lock:
            key = self._key(kind, meta.get("name", ""), meta.get("namespace"))
            old = self._objects.get(key)
            meta["resourceVersion"] = str(next(self._versions))
            self._objects[key] = obj
        event_type = EventType.CREATE if old is None else EventType.UPDATE
        self._publish(WatchEvent(kind, event_type, copy.deepcopy(old), copy.deepcopy(obj)))
        return copy.deepcopy(obj)

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None:
        with self._lock:
            old = self._objects.pop(self._key(kind, name, namespace), None)
        if old is None:
            raise NotFoundError(f"{kind} {namespace or ''}/{name} not found")
        self._publish(WatchEvent(kind, EventType.DELETE, old, None))

    # --- ObjectStore ---

    def get(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
    ) -> dict[str, Any] | None:
        with self._lock:
            obj = self._objects.get(self._key(kind, name, namespace))
            return copy.deepcopy(obj) if obj is not None else None

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (k, ns, _), obj in sorted(self._objects.items())
                if k == kind
                and (namespace is None or ns == namespace)
                and matches_labels(obj, label_selector)
            ]

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        body: dict[str, Any],
        namespace: str | None = None,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            key = self._key(kind, name, namespace)
            old = self._objects.get(key)
            if old is None:
                raise NotFoundError(f"{kind} {namespace or ''}/{name} not found")

            wanted_version = (body.get("metadata") or {}).get("resourceVersion")
            current_version = old["metadata"].get("resourceVersion")
            if wanted_version is not None and wanted_version != current_version:
                raise ConflictError(
                    f"{kind} {namespace or ''}/{name} has been modified "
                    f"(resourceVersion {current_version}, patch expects {wanted_version})"
                )

            if subresource is not None:
                # A subresource patch only touches that subtree.
                body = {subresource: body.get(subresource, {})}
            new = merge_patch(old, body)
            new["metadata"]["resourceVersion"] = str(next(self._versions))
            self._objects[key] = new
            self.patches.append({
                "kind": str(kind),
                "name": name,
                "namespace": namespace,
                "subresource": subresource,
                "body": copy.deepcopy(body),
            })

        self._publish(WatchEvent(kind, EventType.UPDATE, copy.deepcopy(old), copy.deepcopy(new)))
        return copy.deepcopy(new)

    def watch(
        self,
        kind: ResourceKind,
        stop: threading.Event | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> Iterator[WatchEvent]:
        events: queue.Queue[WatchEvent] = queue.Queue()
        with self._lock:
            self._watchers.append((kind, events))
        try:
            while stop is None or not stop.is_set():
                try:
                    event = events.get(timeout=0.05)
                except queue.Empty:
                    continue
                if matches_labels(event.obj, label_selector):
                    yield event
        finally:
            with self._lock:
                self._watchers.remove((kind, events))

    # --- Private ---

    @staticmethod
    def _key(kind: ResourceKind, name: str, namespace: str | None) -> tuple[ResourceKind, str, str]:
        if kind == ResourceKind.MANAGED_CLUSTER:
            namespace = ""
        return (kind, namespace or "", name)

    def _publish(self, event: WatchEvent) -> None:
        with self._lock:
            targets = [q for k, q in self._watchers if k == event.kind]
        for q in targets:
            q.put(event)
