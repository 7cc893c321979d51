"""Idempotent mutations used by the ClusterDeployment reconciler.

Every write here is read-modify-patch: the caller hands in (or the helper
re-reads) the latest copy, the wanted change is computed against it, and a
JSON merge patch carrying that copy's ``resourceVersion`` is sent only if
something actually differs.  A concurrent writer turns the patch into a
ConflictError, which the work queue retries.  Audit events are recorded
only for real changes.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

import yaml

from cluster_import.audit.recorder import AuditRecorder
from cluster_import.constants import (
    CONDITION_MANAGED_CLUSTER_IMPORT_SUCCEEDED,
    CREATED_VIA_AI,
    CREATED_VIA_ANNOTATION,
    CREATED_VIA_DISCOVERY,
    CREATED_VIA_HIVE,
    IMPORT_FINALIZER,
    IMPORT_SECRET_CRDS_KEY,
    IMPORT_SECRET_CRDS_V1_KEY,
    IMPORT_SECRET_IMPORT_KEY,
    IMPORT_SECRET_NAME_SUFFIX,
)
from cluster_import.models import (
    ClusterDeployment,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ResourceKind,
    Secret,
)
from cluster_import.remote.client import RemoteCluster
from cluster_import.store.store import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Raised when the import secret's payload can't be decoded."""


# --- Annotations ---


def set_created_via_annotation(
    store: ObjectStore,
    recorder: AuditRecorder,
    deployment: ClusterDeployment,
    cluster: ManagedCluster,
) -> bool:
    """Record how the managed cluster was created.  Returns True if patched."""
    current = cluster.metadata.annotations.get(CREATED_VIA_ANNOTATION)
    if current == CREATED_VIA_DISCOVERY:
        # discovery owns this cluster's provenance
        return False

    wanted = CREATED_VIA_AI if deployment.is_agent_bare_metal else CREATED_VIA_HIVE
    if current == wanted:
        return False

    store.patch(
        ResourceKind.MANAGED_CLUSTER,
        cluster.name,
        {
            "metadata": {
                "resourceVersion": cluster.metadata.resource_version,
                "annotations": {CREATED_VIA_ANNOTATION: wanted},
            },
        },
    )
    recorder.record(
        "ManagedClusterLabelsUpdated",
        f"The managed cluster {cluster.name} annotation {CREATED_VIA_ANNOTATION}={wanted} is added",
        cluster=cluster.name,
        kind=ResourceKind.MANAGED_CLUSTER,
    )
    return True


# --- Finalizers ---


def remove_import_finalizer(
    store: ObjectStore,
    recorder: AuditRecorder,
    deployment: ClusterDeployment,
) -> bool:
    """Drop the legacy import finalizer once it is the only one left.

    Returns True if the finalizer was removed.
    """
    finalizers = deployment.metadata.finalizers
    if IMPORT_FINALIZER not in finalizers:
        logger.info(
            "The clusterdeployment %s does not have import finalizer, skip it",
            deployment.name,
        )
        return False

    if len(finalizers) != 1:
        logger.info(
            "Wait hive to remove the finalizers from the clusterdeployment %s",
            deployment.name,
        )
        return False

    try:
        store.patch(
            ResourceKind.CLUSTER_DEPLOYMENT,
            deployment.name,
            {
                "metadata": {
                    "resourceVersion": deployment.metadata.resource_version,
                    "finalizers": [],
                },
            },
            namespace=deployment.namespace,
        )
    except NotFoundError:
        # already gone
        return False

    recorder.record(
        "ClusterDeploymentFinalizerRemoved",
        f"The clusterdeployment {deployment.name} finalizer {IMPORT_FINALIZER} is removed",
        cluster=deployment.name,
        kind=ResourceKind.CLUSTER_DEPLOYMENT,
    )
    return True


# --- Status ---


def set_status_condition(
    conditions: list[Condition],
    new: Condition,
    now: datetime | None = None,
) -> tuple[list[Condition], bool]:
    """Set *new* in *conditions* by type.

    The transition time only moves when the status flips.  Returns the new
    list and whether anything changed.
    """
    now = (now or datetime.now(tz=UTC)).replace(microsecond=0)
    result = [c.model_copy() for c in conditions]

    for i, existing in enumerate(result):
        if existing.type != new.type:
            continue
        changed = False
        if existing.status != new.status:
            existing.status = new.status
            existing.last_transition_time = new.last_transition_time or now
            changed = True
        if existing.reason != new.reason:
            existing.reason = new.reason
            changed = True
        if existing.message != new.message:
            existing.message = new.message
            changed = True
        result[i] = existing
        return result, changed

    added = new.model_copy()
    if added.last_transition_time is None:
        added.last_transition_time = now
    result.append(added)
    return result, True


def update_managed_cluster_status(
    store: ObjectStore,
    recorder: AuditRecorder,
    cluster_name: str,
    condition: Condition,
    now: datetime | None = None,
) -> bool:
    """Write *condition* on the managed cluster's status.  Returns True if patched."""
    raw = store.get(ResourceKind.MANAGED_CLUSTER, cluster_name)
    if raw is None:
        raise NotFoundError(f"managed cluster {cluster_name} not found")

    cluster = ManagedCluster.model_validate(raw)
    conditions, changed = set_status_condition(cluster.status.conditions, condition, now)
    if not changed:
        return False

    store.patch(
        ResourceKind.MANAGED_CLUSTER,
        cluster_name,
        {
            "metadata": {"resourceVersion": cluster.metadata.resource_version},
            "status": {"conditions": [c.to_dict() for c in conditions]},
        },
        subresource="status",
    )

    reason = (
        CONDITION_MANAGED_CLUSTER_IMPORT_SUCCEEDED
        if condition.status == ConditionStatus.TRUE
        else "ManagedClusterImportFailed"
    )
    recorder.record(
        reason,
        f"The managed cluster {cluster_name} condition {condition.type} is "
        f"{condition.status}: {condition.message}",
        cluster=cluster_name,
        kind=ResourceKind.MANAGED_CLUSTER,
    )
    return True


# --- Import payload ---


def import_secret_name(cluster_name: str) -> str:
    return f"{cluster_name}-{IMPORT_SECRET_NAME_SUFFIX}"


def _load_documents(secret: Secret, key: str) -> list[dict[str, Any]]:
    if key not in secret.data:
        return []
    payload = secret.decoded(key)
    if payload is None:
        raise ManifestError(
            f"invalid {key} in secret {secret.namespace}/{secret.name}: not base64-encoded"
        )
    try:
        docs = list(yaml.safe_load_all(payload))
    except yaml.YAMLError as exc:
        raise ManifestError(
            f"invalid {key} in secret {secret.namespace}/{secret.name}: {exc}"
        ) from exc
    return [d for d in docs if isinstance(d, dict) and d]


def import_manifests(secret: Secret) -> list[dict[str, Any]]:
    """Decode the import secret into manifests, CRDs first."""
    crds = _load_documents(secret, IMPORT_SECRET_CRDS_V1_KEY) or _load_documents(
        secret, IMPORT_SECRET_CRDS_KEY
    )
    if IMPORT_SECRET_IMPORT_KEY not in secret.data:
        raise ManifestError(
            f"secret {secret.namespace}/{secret.name} has no {IMPORT_SECRET_IMPORT_KEY}"
        )
    return crds + _load_documents(secret, IMPORT_SECRET_IMPORT_KEY)


def import_managed_cluster_from_secret(
    remote: RemoteCluster,
    secret: Secret,
    stop: threading.Event | None = None,
) -> list[str]:
    """Apply the import secret's manifests to the managed cluster."""
    manifests = import_manifests(secret)
    applied = remote.apply(manifests, stop=stop)
    logger.info(
        "Applied %d import manifests from secret %s/%s",
        len(applied), secret.namespace, secret.name,
    )
    return applied


def manifests_equal(a: list[dict[str, Any]], b: list[dict[str, Any]]) -> bool:
    """Compare two rendered manifest lists, order included."""
    if len(a) != len(b):
        return False
    return all(x == y for x, y in zip(a, b, strict=True))
