"""Event router — turns watch events into cluster names to reconcile.

Every watched resource is correlated with a cluster by name alone, but each
kind carries the cluster name in a different place:

- ManagedCluster: its own name
- ClusterDeployment: its own name (namespace and name are equal)
- Secret: its namespace
- ManifestWork: its namespace, or, for hosted-mode works that live in the
  hosting cluster's namespace, its name minus a hosted suffix

Each resource role has one key mapper and one interest predicate.  The
predicate drops re-deliveries that can't change the readiness outcome
(e.g. a secret update that only touched metadata).  Routing is pure: no
network calls, no state.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cluster_import.constants import (
    AUTO_IMPORT_SECRET_NAME,
    HOSTED_WORK_SUFFIXES,
    KLUSTERLET_DEPLOY_MODE_ANNOTATION,
    KLUSTERLET_DEPLOY_MODE_HOSTED,
)
from cluster_import.models import (
    ClusterDeployment,
    EventType,
    ManifestWork,
    ObjectMeta,
    ResourceKind,
    Secret,
    WatchEvent,
)
from cluster_import.reconcile.helpers import import_secret_name, manifests_equal

logger = logging.getLogger(__name__)


class Role(enum.StrEnum):
    CLUSTER = "cluster"
    INSTALL = "install"
    CREDENTIAL_SECRET = "credential-secret"
    IMPORT_SECRET = "import-secret"
    AUTO_IMPORT_SECRET = "auto-import-secret"
    WORK = "work"


@dataclass(frozen=True)
class Route:
    """How to extract the cluster name from, and filter, one role's events."""

    key: Callable[[ObjectMeta], str]
    interesting: Callable[[WatchEvent], bool]


def is_hosted_mode(meta: ObjectMeta) -> bool:
    mode = meta.annotations.get(KLUSTERLET_DEPLOY_MODE_ANNOTATION, "")
    return mode.casefold() == KLUSTERLET_DEPLOY_MODE_HOSTED.casefold()


def role_of(event: WatchEvent) -> Role | None:
    """Classify an event by what its object means to the reconciler."""
    match event.kind:
        case ResourceKind.MANAGED_CLUSTER:
            return Role.CLUSTER
        case ResourceKind.CLUSTER_DEPLOYMENT:
            return Role.INSTALL
        case ResourceKind.MANIFEST_WORK:
            return Role.WORK
        case ResourceKind.SECRET:
            meta = event.meta
            if meta.name == AUTO_IMPORT_SECRET_NAME:
                return Role.AUTO_IMPORT_SECRET
            if meta.name == import_secret_name(meta.namespace):
                return Role.IMPORT_SECRET
            return Role.CREDENTIAL_SECRET
    return None


# --- Key mappers ---


def _own_name(meta: ObjectMeta) -> str:
    return meta.name


def _namespace(meta: ObjectMeta) -> str:
    return meta.namespace


# --- Interest predicates ---


def _secret_data_changed(event: WatchEvent) -> bool:
    old = Secret.model_validate(event.old or {})
    new = Secret.model_validate(event.new or {})
    return old.data != new.data


def _secret_interesting(event: WatchEvent) -> bool:
    """Creation and deletion change readiness; updates only if the payload did."""
    match event.type:
        case EventType.CREATE | EventType.DELETE:
            return True
        case EventType.UPDATE:
            return _secret_data_changed(event)
    return False


def _auto_import_secret_interesting(event: WatchEvent) -> bool:
    """Absence is the default, so deleting the override changes nothing."""
    match event.type:
        case EventType.CREATE:
            return True
        case EventType.UPDATE:
            return _secret_data_changed(event)
    return False


def _work_interesting(event: WatchEvent) -> bool:
    match event.type:
        case EventType.CREATE | EventType.DELETE:
            return True
        case EventType.UPDATE:
            old = ManifestWork.model_validate(event.old or {})
            new = ManifestWork.model_validate(event.new or {})
            return not manifests_equal(old.manifests, new.manifests)
    return False


def _cluster_interesting(event: WatchEvent) -> bool:
    return is_hosted_mode(event.meta)


def _readiness_inputs(deployment: ClusterDeployment) -> tuple[object, ...]:
    ref = deployment.spec.cluster_pool_ref
    return (
        deployment.spec.installed,
        ref is not None,
        ref.claimed_timestamp if ref is not None else None,
        deployment.admin_secret_name,
        deployment.is_agent_bare_metal,
        deployment.metadata.deletion_timestamp,
        tuple(deployment.metadata.finalizers),
    )


def _install_interesting(event: WatchEvent) -> bool:
    match event.type:
        case EventType.CREATE:
            return True
        case EventType.UPDATE:
            old = ClusterDeployment.model_validate(event.old or {})
            new = ClusterDeployment.model_validate(event.new or {})
            return _readiness_inputs(old) != _readiness_inputs(new)
    return False


# --- Router ---


class EventRouter:
    """Routes watch events to the cluster name that must be reconciled.

    Usage::

        router = EventRouter()
        name = router.route(event)
        if name is not None:
            queue.add(name)
    """

    def __init__(self, hosted_work_suffixes: Iterable[str] = HOSTED_WORK_SUFFIXES) -> None:
        self._suffixes = tuple(hosted_work_suffixes)
        self._routes: dict[Role, Route] = {
            Role.CLUSTER: Route(_own_name, _cluster_interesting),
            Role.INSTALL: Route(_own_name, _install_interesting),
            Role.CREDENTIAL_SECRET: Route(_namespace, _secret_interesting),
            Role.IMPORT_SECRET: Route(_namespace, _secret_interesting),
            Role.AUTO_IMPORT_SECRET: Route(_namespace, _auto_import_secret_interesting),
            Role.WORK: Route(self.work_cluster_name, _work_interesting),
        }

    @property
    def hosted_work_suffixes(self) -> tuple[str, ...]:
        return self._suffixes

    def route(self, event: WatchEvent) -> str | None:
        """Return the cluster name to reconcile for *event*, or None to drop it."""
        role = role_of(event)
        route = self._routes.get(role) if role is not None else None
        if route is None:
            return None

        if not route.interesting(event):
            logger.debug("Dropped %s %s event for %s", event.type, role, event.meta.name)
            return None

        key = route.key(event.meta)
        return key or None

    def work_cluster_name(self, meta: ObjectMeta) -> str:
        """Recover the cluster name of a ManifestWork, honouring hosted suffixes."""
        for suffix in self._suffixes:
            tail = f"-{suffix}"
            if meta.name.endswith(tail) and len(meta.name) > len(tail):
                return meta.name[: -len(tail)]
        return meta.namespace
