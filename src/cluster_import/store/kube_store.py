"""KubeStore — ObjectStore backed by the kubernetes dynamic client.

Reads, lists and merge-patches hub objects through
``kubernetes.dynamic.DynamicClient`` and turns its watch stream into
(kind, old, new) events by caching the last seen copy of every object.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError

from cluster_import.models import EventType, ResourceKind, WatchEvent
from cluster_import.store.store import ConflictError, NotFoundError, StoreError

if TYPE_CHECKING:
    from cluster_import.config import ControllerConfig

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"

_WATCH_EVENT_TYPES = {
    "ADDED": EventType.CREATE,
    "MODIFIED": EventType.UPDATE,
    "DELETED": EventType.DELETE,
}


@dataclass(frozen=True)
class ResourceMapping:
    """Maps a resource kind to its API group/version."""

    api_version: str
    kind: str
    namespaced: bool = True


RESOURCE_MAP: dict[ResourceKind, ResourceMapping] = {
    ResourceKind.MANAGED_CLUSTER: ResourceMapping(
        api_version="cluster.open-cluster-management.io/v1",
        kind="ManagedCluster",
        namespaced=False,
    ),
    ResourceKind.CLUSTER_DEPLOYMENT: ResourceMapping(
        api_version="hive.openshift.io/v1",
        kind="ClusterDeployment",
    ),
    ResourceKind.SECRET: ResourceMapping(api_version="v1", kind="Secret"),
    ResourceKind.MANIFEST_WORK: ResourceMapping(
        api_version="work.open-cluster-management.io/v1",
        kind="ManifestWork",
    ),
}


def _selector_string(selector: dict[str, str] | None) -> str | None:
    if not selector:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))


def _translate(exc: DynamicApiError, what: str) -> StoreError:
    status = getattr(exc, "status", None)
    if status == 404:
        return NotFoundError(f"{what} not found")
    if status == 409:
        return ConflictError(f"{what} conflict: {exc.summary()}")
    return StoreError(f"{what}: API error ({status}): {exc.summary()}")


class KubeStore:
    """ObjectStore that talks to the hub cluster's API server."""

    def __init__(
        self,
        dynamic_client: Any,
        request_timeout: float | None = None,
        watch_timeout_seconds: int = 300,
    ) -> None:
        self._client = dynamic_client
        self._request_timeout = request_timeout
        self._watch_timeout = watch_timeout_seconds
        self._resources: dict[ResourceKind, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ControllerConfig) -> KubeStore:
        """Build a store from in-cluster config or a kubeconfig file."""
        if config.in_cluster:
            k8s_config.load_incluster_config()
            api_client = k8s_client.ApiClient()
        else:
            api_client = k8s_config.new_client_from_config(
                config_file=config.kubeconfig,
                context=config.context,
            )
        return cls(DynamicClient(api_client), request_timeout=config.request_timeout_seconds)

    # --- ObjectStore ---

    def get(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
    ) -> dict[str, Any] | None:
        resource = self._resource(kind)
        try:
            obj = self._client.get(
                resource,
                name=name,
                namespace=self._namespace(kind, namespace),
                **self._timeout_kwargs(),
            )
        except DynamicApiError as exc:
            if getattr(exc, "status", None) == 404:
                return None
            raise _translate(exc, f"get {kind} {namespace or ''}/{name}") from exc
        return obj.to_dict()

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        resource = self._resource(kind)
        try:
            result = self._client.get(
                resource,
                namespace=self._namespace(kind, namespace),
                label_selector=_selector_string(label_selector),
                **self._timeout_kwargs(),
            )
        except DynamicApiError as exc:
            raise _translate(exc, f"list {kind} in {namespace or '<all>'}") from exc
        return result.to_dict().get("items") or []

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        body: dict[str, Any],
        namespace: str | None = None,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        resource = self._resource(kind)
        if subresource is not None:
            resource = resource.subresources[subresource]
        try:
            obj = self._client.patch(
                resource,
                body=body,
                name=name,
                namespace=self._namespace(kind, namespace),
                content_type=MERGE_PATCH,
                **self._timeout_kwargs(),
            )
        except DynamicApiError as exc:
            raise _translate(exc, f"patch {kind} {namespace or ''}/{name}") from exc
        return obj.to_dict()

    def watch(
        self,
        kind: ResourceKind,
        stop: threading.Event | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> Iterator[WatchEvent]:
        """Watch *kind* across all namespaces, re-establishing the stream on timeout."""
        resource = self._resource(kind)
        cache: dict[tuple[str, str], dict[str, Any]] = {}
        resource_version: str | None = None

        while stop is None or not stop.is_set():
            try:
                stream = self._client.watch(
                    resource,
                    label_selector=_selector_string(label_selector),
                    resource_version=resource_version,
                    timeout=self._watch_timeout,
                )
                for raw in stream:
                    if stop is not None and stop.is_set():
                        return
                    event = self._to_event(kind, raw, cache)
                    if event is None:
                        continue
                    resource_version = event.meta.resource_version or resource_version
                    yield event
            except DynamicApiError as exc:
                if getattr(exc, "status", None) == 410:
                    # Our resourceVersion expired; relist from now.
                    logger.info("Watch on %s expired, restarting", kind)
                    resource_version = None
                    continue
                raise _translate(exc, f"watch {kind}") from exc

    # --- Private ---

    def _resource(self, kind: ResourceKind) -> Any:
        with self._lock:
            if kind not in self._resources:
                mapping = RESOURCE_MAP[kind]
                self._resources[kind] = self._client.resources.get(
                    api_version=mapping.api_version,
                    kind=mapping.kind,
                )
            return self._resources[kind]

    @staticmethod
    def _namespace(kind: ResourceKind, namespace: str | None) -> str | None:
        return namespace if RESOURCE_MAP[kind].namespaced else None

    def _timeout_kwargs(self) -> dict[str, Any]:
        if self._request_timeout is None:
            return {}
        return {"_request_timeout": self._request_timeout}

    @staticmethod
    def _to_event(
        kind: ResourceKind,
        raw: dict[str, Any],
        cache: dict[tuple[str, str], dict[str, Any]],
    ) -> WatchEvent | None:
        event_type = _WATCH_EVENT_TYPES.get(raw.get("type", ""))
        obj = raw.get("raw_object")
        if event_type is None or not isinstance(obj, dict):
            return None

        meta = obj.get("metadata") or {}
        key = (meta.get("namespace") or "", meta.get("name") or "")
        old = cache.get(key)

        if event_type == EventType.DELETE:
            cache.pop(key, None)
            return WatchEvent(kind, EventType.DELETE, old or obj, None)

        cache[key] = obj
        if old is None:
            return WatchEvent(kind, EventType.CREATE, None, obj)
        return WatchEvent(kind, EventType.UPDATE, old, obj)
