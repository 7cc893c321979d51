"""cluster-import: imports installed hive clusters into an Open Cluster Management hub."""

__version__ = "0.4.0"

from cluster_import.audit.recorder import AuditError, AuditRecorder, verify_log
from cluster_import.config import ControllerConfig, find_config, load_config
from cluster_import.context import ControllerContext, build_context
from cluster_import.controller.manager import Controller
from cluster_import.controller.queue import BackoffConfig, WorkQueue
from cluster_import.models import (
    AuditEvent,
    ClusterDeployment,
    Condition,
    EventType,
    ManagedCluster,
    ManifestWork,
    ReconcileResult,
    ResourceKind,
    Secret,
    WatchEvent,
)
from cluster_import.reconcile.orchestrator import (
    ClusterDeploymentReconciler,
    ReconcileCancelled,
    ReconcileError,
)
from cluster_import.remote.client import RemoteClientError, RemoteClientFactory, RemoteCluster
from cluster_import.router.router import EventRouter
from cluster_import.store.store import (
    ConflictError,
    InMemoryStore,
    NotFoundError,
    ObjectStore,
    StoreError,
)

__all__ = [
    "AuditError",
    "AuditEvent",
    "AuditRecorder",
    "BackoffConfig",
    "build_context",
    "ClusterDeployment",
    "ClusterDeploymentReconciler",
    "Condition",
    "ConflictError",
    "Controller",
    "ControllerConfig",
    "ControllerContext",
    "EventRouter",
    "EventType",
    "find_config",
    "InMemoryStore",
    "load_config",
    "ManagedCluster",
    "ManifestWork",
    "NotFoundError",
    "ObjectStore",
    "ReconcileCancelled",
    "ReconcileError",
    "ReconcileResult",
    "RemoteClientError",
    "RemoteClientFactory",
    "RemoteCluster",
    "ResourceKind",
    "Secret",
    "StoreError",
    "verify_log",
    "WatchEvent",
    "WorkQueue",
    "__version__",
]
