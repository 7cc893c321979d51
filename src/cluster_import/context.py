"""ControllerContext — the collaborators shared by the router, reconciler and workers.

Built once at startup and handed to every component; nothing in the
package keeps module-level state.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from cluster_import.audit.recorder import AuditRecorder
from cluster_import.config import ControllerConfig
from cluster_import.remote.client import RemoteClientFactory
from cluster_import.store.store import ObjectStore


@dataclass
class ControllerContext:
    """Everything a reconcile needs beyond the cluster name."""

    config: ControllerConfig
    store: ObjectStore
    remote_factory: RemoteClientFactory
    recorder: AuditRecorder = field(default_factory=AuditRecorder)
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()


def build_context(config: ControllerConfig) -> ControllerContext:
    """Wire the kubernetes-backed collaborators from *config*."""
    from cluster_import.remote.kube_remote import KubeRemoteClientFactory
    from cluster_import.store.kube_store import KubeStore

    return ControllerContext(
        config=config,
        store=KubeStore.from_config(config),
        remote_factory=KubeRemoteClientFactory(
            request_timeout=config.request_timeout_seconds,
        ),
        recorder=AuditRecorder(config.audit_log),
    )
