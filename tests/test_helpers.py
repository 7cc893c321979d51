"""Tests for the reconciler's idempotent helpers."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest
from builders import (
    CRDS_YAML,
    FakeRemote,
    deployment,
    import_secret,
    legacy_finalized_deployment,
    managed_cluster,
    secret,
)

from cluster_import.audit.recorder import AuditRecorder
from cluster_import.constants import (
    CREATED_VIA_AI,
    CREATED_VIA_ANNOTATION,
    CREATED_VIA_DISCOVERY,
    CREATED_VIA_HIVE,
    IMPORT_FINALIZER,
)
from cluster_import.models import (
    ClusterDeployment,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ResourceKind,
    Secret,
)
from cluster_import.reconcile.helpers import (
    ManifestError,
    import_managed_cluster_from_secret,
    import_manifests,
    import_secret_name,
    manifests_equal,
    remove_import_finalizer,
    set_created_via_annotation,
    set_status_condition,
    update_managed_cluster_status,
)
from cluster_import.remote.client import ApplyCancelled
from cluster_import.store.store import ConflictError, InMemoryStore, NotFoundError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _load_cluster(store: InMemoryStore, name: str = "c1") -> ManagedCluster:
    return ManagedCluster.model_validate(store.get(ResourceKind.MANAGED_CLUSTER, name))


def _load_deployment(store: InMemoryStore, name: str = "c1") -> ClusterDeployment:
    return ClusterDeployment.model_validate(store.get(ResourceKind.CLUSTER_DEPLOYMENT, name, name))


def _imported(message: str = "Import succeeded") -> Condition:
    return Condition(
        type="ManagedClusterImportSucceeded",
        status=ConditionStatus.TRUE,
        reason="ManagedClusterImported",
        message=message,
    )


def _not_imported(message: str = "Unable to import c1: boom") -> Condition:
    return Condition(
        type="ManagedClusterImportSucceeded",
        status=ConditionStatus.FALSE,
        reason="ManagedClusterNotImported",
        message=message,
    )


# --- created-via annotation ---


class TestSetCreatedViaAnnotation:
    @pytest.mark.parametrize(
        ("agent", "expected"), [(False, CREATED_VIA_HIVE), (True, CREATED_VIA_AI)],
    )
    def test_sets_annotation(
        self, store: InMemoryStore, recorder: AuditRecorder, agent: bool, expected: str,
    ) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))
        cd = ClusterDeployment.model_validate(deployment("c1", agent_bare_metal=agent))

        assert set_created_via_annotation(store, recorder, cd, _load_cluster(store))

        assert _load_cluster(store).metadata.annotations[CREATED_VIA_ANNOTATION] == expected
        assert [e.reason for e in recorder.read_events()] == ["ManagedClusterLabelsUpdated"]

    def test_existing_annotations_kept(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1", annotations={"team": "a"}))
        cd = ClusterDeployment.model_validate(deployment("c1"))

        set_created_via_annotation(store, recorder, cd, _load_cluster(store))

        assert _load_cluster(store).metadata.annotations == {
            "team": "a", CREATED_VIA_ANNOTATION: CREATED_VIA_HIVE,
        }

    def test_already_set_is_noop(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster(
            "c1", annotations={CREATED_VIA_ANNOTATION: CREATED_VIA_HIVE},
        ))
        cd = ClusterDeployment.model_validate(deployment("c1"))

        assert not set_created_via_annotation(store, recorder, cd, _load_cluster(store))
        assert store.patches == []
        assert recorder.read_events() == []

    def test_discovery_is_never_overwritten(
        self, store: InMemoryStore, recorder: AuditRecorder,
    ) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster(
            "c1", annotations={CREATED_VIA_ANNOTATION: CREATED_VIA_DISCOVERY},
        ))
        cd = ClusterDeployment.model_validate(deployment("c1", agent_bare_metal=True))

        assert not set_created_via_annotation(store, recorder, cd, _load_cluster(store))
        assert store.patches == []

    def test_wrong_value_is_corrected(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster(
            "c1", annotations={CREATED_VIA_ANNOTATION: CREATED_VIA_HIVE},
        ))
        cd = ClusterDeployment.model_validate(deployment("c1", agent_bare_metal=True))

        assert set_created_via_annotation(store, recorder, cd, _load_cluster(store))
        assert _load_cluster(store).metadata.annotations[CREATED_VIA_ANNOTATION] == CREATED_VIA_AI

    def test_stale_copy_conflicts(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))
        stale = _load_cluster(store)
        store.patch(ResourceKind.MANAGED_CLUSTER, "c1", {"metadata": {"labels": {"x": "y"}}})
        cd = ClusterDeployment.model_validate(deployment("c1"))

        with pytest.raises(ConflictError):
            set_created_via_annotation(store, recorder, cd, stale)
        assert recorder.read_events() == []


# --- legacy finalizer ---


class TestRemoveImportFinalizer:
    def test_sole_finalizer_removed(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.CLUSTER_DEPLOYMENT, legacy_finalized_deployment("c1"))

        assert remove_import_finalizer(store, recorder, _load_deployment(store))

        assert _load_deployment(store).metadata.finalizers == []
        assert len(recorder.read_events()) == 1

    def test_other_finalizers_present(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(
            ResourceKind.CLUSTER_DEPLOYMENT,
            legacy_finalized_deployment("c1", "hive.openshift.io/deprovision"),
        )

        assert not remove_import_finalizer(store, recorder, _load_deployment(store))
        assert IMPORT_FINALIZER in _load_deployment(store).metadata.finalizers
        assert store.patches == []

    def test_no_import_finalizer(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(
            ResourceKind.CLUSTER_DEPLOYMENT,
            deployment("c1", finalizers=["hive.openshift.io/deprovision"], deleting=True),
        )

        assert not remove_import_finalizer(store, recorder, _load_deployment(store))
        assert store.patches == []

    def test_deployment_already_gone(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        cd = ClusterDeployment.model_validate(legacy_finalized_deployment("c1"))

        assert not remove_import_finalizer(store, recorder, cd)
        assert recorder.read_events() == []


# --- status conditions ---


class TestSetStatusCondition:
    def test_appends_new_condition(self) -> None:
        conditions, changed = set_status_condition([], _imported(), NOW)

        assert changed
        assert conditions[0].last_transition_time == NOW

    def test_same_condition_is_unchanged(self) -> None:
        first, _ = set_status_condition([], _imported(), NOW)
        second, changed = set_status_condition(first, _imported(), NOW + timedelta(hours=1))

        assert not changed
        assert second[0].last_transition_time == NOW

    def test_message_change_keeps_transition_time(self) -> None:
        first, _ = set_status_condition([], _not_imported("a"), NOW)
        second, changed = set_status_condition(first, _not_imported("b"), NOW + timedelta(hours=1))

        assert changed
        assert second[0].message == "b"
        assert second[0].last_transition_time == NOW

    def test_status_flip_moves_transition_time(self) -> None:
        later = NOW + timedelta(hours=1)
        first, _ = set_status_condition([], _not_imported(), NOW)
        second, changed = set_status_condition(first, _imported(), later)

        assert changed
        assert second[0].status == ConditionStatus.TRUE
        assert second[0].last_transition_time == later

    def test_other_conditions_untouched(self) -> None:
        joined = Condition(type="ManagedClusterJoined", status=ConditionStatus.TRUE)
        conditions, _ = set_status_condition([joined], _imported(), NOW)

        assert [c.type for c in conditions] == ["ManagedClusterJoined", "ManagedClusterImportSucceeded"]
        assert conditions[0] == joined

    def test_input_not_mutated(self) -> None:
        original, _ = set_status_condition([], _not_imported(), NOW)
        set_status_condition(original, _imported(), NOW + timedelta(hours=1))

        assert original[0].status == ConditionStatus.FALSE


class TestUpdateManagedClusterStatus:
    def test_writes_status_subresource(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))

        assert update_managed_cluster_status(store, recorder, "c1", _imported(), NOW)

        condition = _load_cluster(store).get_condition("ManagedClusterImportSucceeded")
        assert condition.status == ConditionStatus.TRUE
        assert condition.last_transition_time == NOW
        assert store.patches[-1]["subresource"] == "status"
        assert [e.reason for e in recorder.read_events()] == ["ManagedClusterImportSucceeded"]

    def test_failure_is_recorded(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))

        update_managed_cluster_status(store, recorder, "c1", _not_imported(), NOW)

        assert [e.reason for e in recorder.read_events()] == ["ManagedClusterImportFailed"]

    def test_unchanged_is_not_written(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        store.create(ResourceKind.MANAGED_CLUSTER, managed_cluster("c1"))
        update_managed_cluster_status(store, recorder, "c1", _imported(), NOW)

        assert not update_managed_cluster_status(
            store, recorder, "c1", _imported(), NOW + timedelta(hours=1),
        )
        assert len(store.patches) == 1
        assert len(recorder.read_events()) == 1

    def test_missing_cluster(self, store: InMemoryStore, recorder: AuditRecorder) -> None:
        with pytest.raises(NotFoundError):
            update_managed_cluster_status(store, recorder, "c1", _imported(), NOW)


# --- import payload ---


class TestImportManifests:
    def test_crds_first(self) -> None:
        s = Secret.model_validate(import_secret("c1"))
        kinds = [m["kind"] for m in import_manifests(s)]
        assert kinds == ["CustomResourceDefinition", "Namespace", "ServiceAccount"]

    def test_falls_back_to_legacy_crds_key(self) -> None:
        s = Secret.model_validate(secret("c1-import", "c1", {
            "crds.yaml": CRDS_YAML, "import.yaml": "kind: Namespace\n",
        }))
        assert [m["kind"] for m in import_manifests(s)] == ["CustomResourceDefinition", "Namespace"]

    def test_without_crds(self) -> None:
        s = Secret.model_validate(import_secret("c1", crds_yaml=None))
        assert [m["kind"] for m in import_manifests(s)] == ["Namespace", "ServiceAccount"]

    def test_empty_documents_skipped(self) -> None:
        s = Secret.model_validate(import_secret("c1", import_yaml="---\nkind: Namespace\n---\n"))
        assert len(import_manifests(s)) == 2

    def test_missing_import_key(self) -> None:
        s = Secret.model_validate(secret("c1-import", "c1", {"crdsv1.yaml": CRDS_YAML}))
        with pytest.raises(ManifestError, match="import.yaml"):
            import_manifests(s)

    def test_invalid_yaml(self) -> None:
        s = Secret.model_validate(import_secret("c1", import_yaml="kind: [unclosed\n"))
        with pytest.raises(ManifestError, match="invalid import.yaml"):
            import_manifests(s)

    def test_undecodable_import_payload(self) -> None:
        raw = import_secret("c1")
        raw["data"]["import.yaml"] = "!!!not-base64!!!"
        with pytest.raises(ManifestError, match="invalid import.yaml.*not base64"):
            import_manifests(Secret.model_validate(raw))

    def test_import_secret_name(self) -> None:
        assert import_secret_name("cluster-a") == "cluster-a-import"


class TestImportManagedClusterFromSecret:
    def test_applies_manifests(self) -> None:
        remote = FakeRemote()
        applied = import_managed_cluster_from_secret(remote, Secret.model_validate(import_secret("c1")))

        assert len(remote.applied) == 1
        assert applied[0] == "CustomResourceDefinition/klusterlets.operator.open-cluster-management.io"

    def test_stop_is_passed_through(self) -> None:
        stop = threading.Event()
        stop.set()
        with pytest.raises(ApplyCancelled):
            import_managed_cluster_from_secret(
                FakeRemote(), Secret.model_validate(import_secret("c1")), stop=stop,
            )


class TestManifestsEqual:
    def test_equal(self) -> None:
        assert manifests_equal([{"kind": "A"}], [{"kind": "A"}])

    def test_order_matters(self) -> None:
        assert not manifests_equal([{"kind": "A"}, {"kind": "B"}], [{"kind": "B"}, {"kind": "A"}])

    def test_length_differs(self) -> None:
        assert not manifests_equal([{"kind": "A"}], [])
