"""Shared fixtures: an in-memory hub, a fake managed cluster and a context."""

from __future__ import annotations

import pytest
from builders import (
    FakeRemote,
    FakeRemoteFactory,
    admin_secret,
    deployment,
    import_secret,
    klusterlet_works,
    managed_cluster,
)

from cluster_import.audit.recorder import AuditRecorder
from cluster_import.config import ControllerConfig
from cluster_import.context import ControllerContext
from cluster_import.models import ResourceKind
from cluster_import.reconcile.orchestrator import ClusterDeploymentReconciler
from cluster_import.store.store import InMemoryStore


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture()
def remote_factory(remote: FakeRemote) -> FakeRemoteFactory:
    return FakeRemoteFactory(remote)


@pytest.fixture()
def recorder() -> AuditRecorder:
    return AuditRecorder()


@pytest.fixture()
def ctx(
    store: InMemoryStore,
    remote_factory: FakeRemoteFactory,
    recorder: AuditRecorder,
) -> ControllerContext:
    return ControllerContext(
        config=ControllerConfig(max_concurrent_reconciles=2),
        store=store,
        remote_factory=remote_factory,
        recorder=recorder,
    )


@pytest.fixture()
def reconciler(ctx: ControllerContext) -> ClusterDeploymentReconciler:
    return ClusterDeploymentReconciler(ctx)


@pytest.fixture()
def ready_hub(store: InMemoryStore) -> InMemoryStore:
    """Hub where cluster c1 passes every readiness gate."""
    store.create(ResourceKind.CLUSTER_DEPLOYMENT, deployment("c1"))
    store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))
    store.create(ResourceKind.SECRET, admin_secret("c1"))
    store.create(ResourceKind.SECRET, import_secret("c1"))
    for w in klusterlet_works("c1"):
        store.create(ResourceKind.MANIFEST_WORK, w)
    return store
