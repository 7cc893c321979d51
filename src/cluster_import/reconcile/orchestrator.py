"""ClusterDeployment reconciler — imports installed hive clusters.

Given a cluster name, the reconciler walks a linear readiness gate and
stops at the first unmet precondition:

  1. ClusterDeployment exists (deleting: drop the legacy finalizer, stop)
  2. ManagedCluster exists
  3. ClusterDeployment is installed
  4. a cluster-pool claim, if any, has been claimed
  5. created-via annotation converged
  6. no auto-import secret (another path owns the import)
  7. admin kubeconfig secret resolved, remote client built
  8. import secret generated
  9. both klusterlet ManifestWorks generated
 10. import manifests applied to the managed cluster
 11. import condition written on the ManagedCluster

Steps 1-6 touch only the hub; the managed cluster is contacted only once
they all pass.  A missing dependency is not an error, the event that
creates it routes the cluster back in.  Failures from steps 7-11 are
collected and returned together so the work queue retries them.
"""

from __future__ import annotations

import logging

from cluster_import.constants import (
    AUTO_IMPORT_SECRET_NAME,
    CONDITION_MANAGED_CLUSTER_IMPORT_SUCCEEDED,
    EXPECTED_KLUSTERLET_WORKS,
    KLUSTERLET_WORKS_LABEL,
    REASON_MANAGED_CLUSTER_IMPORTED,
    REASON_MANAGED_CLUSTER_NOT_IMPORTED,
)
from cluster_import.context import ControllerContext
from cluster_import.models import (
    ClusterDeployment,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ReconcileResult,
    ResourceKind,
    Secret,
)
from cluster_import.reconcile.helpers import (
    ManifestError,
    import_managed_cluster_from_secret,
    import_secret_name,
    remove_import_finalizer,
    set_created_via_annotation,
    update_managed_cluster_status,
)
from cluster_import.remote.client import ApplyCancelled, RemoteClientError, RemoteCluster
from cluster_import.store.store import NotFoundError, StoreError

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """Every error collected during one reconcile, reported together."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


class ReconcileCancelled(Exception):
    """The controller is shutting down; the reconcile must be retried."""


class ClusterDeploymentReconciler:
    """Reconciles the ClusterDeployment in a managed cluster's namespace.

    Holds no per-cluster state: every run re-reads everything, so running
    it twice, or out of order with the events that triggered it, is safe.
    The work queue guarantees at most one run per cluster at a time.
    """

    def __init__(self, ctx: ControllerContext) -> None:
        self._ctx = ctx

    def reconcile(self, cluster_name: str) -> ReconcileResult:
        """Reconcile one cluster.  Never raises for store or remote failures."""
        try:
            return self._reconcile(cluster_name)
        except (StoreError, RemoteClientError, ReconcileCancelled) as exc:
            return ReconcileResult(error=exc)

    def _reconcile(self, cluster_name: str) -> ReconcileResult:
        store = self._ctx.store
        recorder = self._ctx.recorder

        raw_deployment = store.get(ResourceKind.CLUSTER_DEPLOYMENT, cluster_name, cluster_name)
        if raw_deployment is None:
            return ReconcileResult()
        deployment = ClusterDeployment.model_validate(raw_deployment)

        logger.info("Reconciling clusterdeployment %s", cluster_name)

        if deployment.is_deleting:
            # The finalizer is no longer set, but older releases left it behind.
            remove_import_finalizer(store, recorder, deployment)
            return ReconcileResult()

        raw_cluster = store.get(ResourceKind.MANAGED_CLUSTER, cluster_name)
        if raw_cluster is None:
            # detached
            return ReconcileResult()
        cluster = ManagedCluster.model_validate(raw_cluster)

        if not deployment.spec.installed:
            logger.info("The hive managed cluster %s is not installed, skipped", cluster_name)
            return ReconcileResult()

        if deployment.is_pool_claim_pending:
            logger.info("The hive managed cluster %s is not claimed, skipped", cluster_name)
            return ReconcileResult()

        set_created_via_annotation(store, recorder, deployment, cluster)

        if store.get(ResourceKind.SECRET, AUTO_IMPORT_SECRET_NAME, cluster_name) is not None:
            logger.info("The hive managed cluster %s has auto import secret, skipped", cluster_name)
            return ReconcileResult()

        self._check_cancelled(cluster_name)
        remote = self._remote_cluster(deployment)

        raw_import = store.get(ResourceKind.SECRET, import_secret_name(cluster_name), cluster_name)
        if raw_import is None:
            return ReconcileResult()
        import_secret = Secret.model_validate(raw_import)

        works = store.list(
            ResourceKind.MANIFEST_WORK,
            namespace=cluster_name,
            label_selector={KLUSTERLET_WORKS_LABEL: "true"},
        )
        if len(works) != EXPECTED_KLUSTERLET_WORKS:
            logger.info("Waiting for klusterlet manifest works for managed cluster %s", cluster_name)
            return ReconcileResult()

        self._check_cancelled(cluster_name)
        return self._import(cluster_name, remote, import_secret)

    def _remote_cluster(self, deployment: ClusterDeployment) -> RemoteCluster:
        secret_name = deployment.admin_secret_name
        if not secret_name:
            raise NotFoundError(
                f"clusterdeployment {deployment.name} has no admin kubeconfig secret reference"
            )
        raw = self._ctx.store.get(ResourceKind.SECRET, secret_name, deployment.name)
        if raw is None:
            raise NotFoundError(f"secret {deployment.name}/{secret_name} not found")
        return self._ctx.remote_factory.build(Secret.model_validate(raw))

    def _import(
        self,
        cluster_name: str,
        remote: RemoteCluster,
        import_secret: Secret,
    ) -> ReconcileResult:
        errors: list[Exception] = []
        condition = Condition(
            type=CONDITION_MANAGED_CLUSTER_IMPORT_SUCCEEDED,
            status=ConditionStatus.TRUE,
            reason=REASON_MANAGED_CLUSTER_IMPORTED,
            message="Import succeeded",
        )

        try:
            import_managed_cluster_from_secret(remote, import_secret, stop=self._ctx.cancel)
        except ApplyCancelled as exc:
            # an interrupted apply says nothing about the cluster
            raise ReconcileCancelled(f"reconcile of {cluster_name} cancelled: {exc}") from exc
        except (RemoteClientError, ManifestError) as exc:
            errors.append(exc)
            condition.status = ConditionStatus.FALSE
            condition.reason = REASON_MANAGED_CLUSTER_NOT_IMPORTED
            condition.message = f"Unable to import {cluster_name}: {exc}"

        try:
            update_managed_cluster_status(
                self._ctx.store, self._ctx.recorder, cluster_name, condition,
            )
        except StoreError as exc:
            errors.append(exc)

        if errors:
            return ReconcileResult(error=ReconcileError(errors))
        return ReconcileResult()

    def _check_cancelled(self, cluster_name: str) -> None:
        if self._ctx.cancelled:
            raise ReconcileCancelled(f"reconcile of {cluster_name} cancelled")
