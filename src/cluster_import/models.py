"""Core data models for cluster-import.

Defines typed views over the raw Kubernetes objects the controller reads:
- ClusterDeployment (the hive install record)
- ManagedCluster (the cluster record and its status conditions)
- Secret (admin kubeconfig, import payload, auto-import override)
- ManifestWork (the generated klusterlet works)

plus the watch events fed to the router and the audit events the
controller records.  Raw objects stay plain dicts everywhere else; these
models are parsed on demand with ``model_validate``.
"""

from __future__ import annotations

import base64
import binascii
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# --- Enums ---


class ResourceKind(enum.StrEnum):
    MANAGED_CLUSTER = "ManagedCluster"
    CLUSTER_DEPLOYMENT = "ClusterDeployment"
    SECRET = "Secret"
    MANIFEST_WORK = "ManifestWork"


class EventType(enum.StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    GENERIC = "generic"


class ConditionStatus(enum.StrEnum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# --- Base ---


class KubeModel(BaseModel):
    """Parses camelCase Kubernetes JSON, ignoring fields we don't use."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: datetime | None = None
    resource_version: str = ""

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _none_map(cls, v: Any) -> Any:
        return v if v is not None else {}

    @field_validator("finalizers", mode="before")
    @classmethod
    def _none_list(cls, v: Any) -> Any:
        return v if v is not None else []


class KubeObject(KubeModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# --- ClusterDeployment ---


class LocalObjectReference(KubeModel):
    name: str = ""


class ClusterMetadata(KubeModel):
    admin_kubeconfig_secret_ref: LocalObjectReference = Field(
        default_factory=LocalObjectReference,
    )


class ClusterPoolReference(KubeModel):
    namespace: str = ""
    pool_name: str = ""
    claim_name: str = ""
    claimed_timestamp: datetime | None = None


class Platform(KubeModel):
    """Only the presence of the agent bare-metal block matters here."""

    agent_bare_metal: dict[str, Any] | None = None


class ClusterDeploymentSpec(KubeModel):
    installed: bool = False
    cluster_pool_ref: ClusterPoolReference | None = None
    cluster_metadata: ClusterMetadata | None = None
    platform: Platform = Field(default_factory=Platform)

    @field_validator("platform", mode="before")
    @classmethod
    def _none_platform(cls, v: Any) -> Any:
        return v if v is not None else {}


class ClusterDeployment(KubeObject):
    """The hive install record for a cluster."""

    spec: ClusterDeploymentSpec = Field(default_factory=ClusterDeploymentSpec)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def is_pool_claim_pending(self) -> bool:
        """True when bound to a cluster pool but not claimed yet."""
        ref = self.spec.cluster_pool_ref
        return ref is not None and ref.claimed_timestamp is None

    @property
    def is_agent_bare_metal(self) -> bool:
        return self.spec.platform.agent_bare_metal is not None

    @property
    def admin_secret_name(self) -> str:
        if self.spec.cluster_metadata is None:
            return ""
        return self.spec.cluster_metadata.admin_kubeconfig_secret_ref.name


# --- ManagedCluster ---


class Condition(KubeModel):
    """A metav1.Condition."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ManagedClusterStatus(KubeModel):
    conditions: list[Condition] = Field(default_factory=list)

    @field_validator("conditions", mode="before")
    @classmethod
    def _none_conditions(cls, v: Any) -> Any:
        return v if v is not None else []


class ManagedCluster(KubeObject):
    """The cluster record."""

    status: ManagedClusterStatus = Field(default_factory=ManagedClusterStatus)

    @field_validator("status", mode="before")
    @classmethod
    def _none_status(cls, v: Any) -> Any:
        return v if v is not None else {}

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.status.conditions:
            if condition.type == condition_type:
                return condition
        return None


# --- Secret ---


class Secret(KubeObject):
    """A core/v1 Secret.  ``data`` values are base64-encoded."""

    type: str = ""
    data: dict[str, str] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _none_data(cls, v: Any) -> Any:
        return v if v is not None else {}

    def decoded(self, key: str) -> bytes | None:
        """Return the decoded value under *key*, or None if absent/invalid."""
        value = self.data.get(key)
        if value is None:
            return None
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return None


# --- ManifestWork ---


class ManifestsTemplate(KubeModel):
    manifests: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("manifests", mode="before")
    @classmethod
    def _none_manifests(cls, v: Any) -> Any:
        return v if v is not None else []


class ManifestWorkSpec(KubeModel):
    workload: ManifestsTemplate = Field(default_factory=ManifestsTemplate)


class ManifestWork(KubeObject):
    spec: ManifestWorkSpec = Field(default_factory=ManifestWorkSpec)

    @property
    def manifests(self) -> list[dict[str, Any]]:
        return self.spec.workload.manifests


# --- Events ---


@dataclass(frozen=True)
class WatchEvent:
    """A change notification: (kind, old-object-or-None, new-object-or-None)."""

    kind: ResourceKind
    type: EventType
    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None

    @property
    def obj(self) -> dict[str, Any]:
        """The object the event is about: new for create/update, old for delete."""
        return self.new if self.new is not None else (self.old or {})

    @property
    def meta(self) -> ObjectMeta:
        return ObjectMeta.model_validate(self.obj.get("metadata") or {})


@dataclass
class ReconcileResult:
    """Outcome of one reconcile run.

    ``error`` set means the work queue must re-deliver the key with backoff.
    """

    requeue: bool = False
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuditEvent(BaseModel):
    """A single audit log entry, one per actual mutation."""

    event_id: str
    timestamp: datetime
    reason: str
    message: str
    cluster: str = ""
    kind: str = ""
    prev_hash: str = ""
    entry_hash: str = ""
