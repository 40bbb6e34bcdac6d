"""Pydantic models for the records a machine scope works on.

These models provide:
1. Type-safe parsing of objects returned by the resource store
2. Stable camelCase serialization for computing patches
3. Resource coordinates for every kind the scope reads or writes

Only the fields the scope consumes are modelled. Unknown fields are ignored
on parse, and because patches are computed from two dumps of the same model
they are never sent back, so they are never clobbered either.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# =============================================================================
# Well-known names
# =============================================================================

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"

READY_CONDITION = "Ready"
MACHINE_PROVISIONED_CONDITION = "MachineProvisioned"

BOOTSTRAP_DATA_KEY = "value"

# Earliest possible creation time, used for records not yet persisted
EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ResourceKind:
    """Coordinates of a resource type in the store."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        """apiVersion string, e.g. ``cluster.x-k8s.io/v1beta1`` or ``v1``."""
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.plural}.{self.group}" if self.group else self.plural


SECRET_KIND = ResourceKind(group="", version="v1", plural="secrets", kind="Secret")
MACHINE_KIND = ResourceKind(
    group="cluster.x-k8s.io", version="v1beta1", plural="machines", kind="Machine"
)
CLUSTER_KIND = ResourceKind(
    group="cluster.x-k8s.io", version="v1beta1", plural="clusters", kind="Cluster"
)


# =============================================================================
# Metadata and conditions
# =============================================================================


class _Record(BaseModel):
    """Base for all store records."""

    model_config = {"extra": "ignore", "populate_by_name": True}


class OwnerReference(_Record):
    """Reference from a dependent object to its owner."""

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str = ""
    controller: bool | None = None


class ObjectMeta(_Record):
    """Object metadata common to all kinds."""

    name: str
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")
    creation_timestamp: datetime | None = Field(None, alias="creationTimestamp")
    resource_version: str | None = Field(None, alias="resourceVersion")
    uid: str | None = None

    @property
    def key(self) -> str:
        """``namespace/name`` identity of the object."""
        return f"{self.namespace}/{self.name}"


class ConditionStatus(str, Enum):
    """Condition status values."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionSeverity(str, Enum):
    """How bad a False condition is. Empty for True conditions."""

    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    NONE = ""


class Condition(_Record):
    """A named, timestamped status flag."""

    type: str
    status: ConditionStatus
    severity: ConditionSeverity = ConditionSeverity.NONE
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = Field(None, alias="lastTransitionTime")


# =============================================================================
# Cluster API records
# =============================================================================


class Bootstrap(_Record):
    """Bootstrap configuration of a generic machine."""

    data_secret_name: str | None = Field(None, alias="dataSecretName")


class GenericMachineSpec(_Record):
    cluster_name: str = Field("", alias="clusterName")
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    provider_id: str | None = Field(None, alias="providerID")
    version: str | None = None


class GenericMachine(_Record):
    """Cluster API ``Machine``. Read-only from the scope's point of view."""

    api_version: str = Field(MACHINE_KIND.api_version, alias="apiVersion")
    kind: str = MACHINE_KIND.kind
    metadata: ObjectMeta
    spec: GenericMachineSpec = Field(default_factory=GenericMachineSpec)


class ClusterSpec(_Record):
    paused: bool = False


class Cluster(_Record):
    """Cluster API ``Cluster``."""

    api_version: str = Field(CLUSTER_KIND.api_version, alias="apiVersion")
    kind: str = CLUSTER_KIND.kind
    metadata: ObjectMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)


# =============================================================================
# Provider machine
# =============================================================================


class ProviderMachineSpec(_Record):
    """Desired state of a provider machine."""

    provider_id: str | None = Field(None, alias="providerID")
    datacenter_id: str = Field("", alias="datacenterID")
    num_cores: int | None = Field(None, alias="numCores")
    memory_mb: int | None = Field(None, alias="memoryMB")
    availability_zone: str | None = Field(None, alias="availabilityZone")


class ProviderMachineStatus(_Record):
    """Observed state of a provider machine."""

    ready: bool = False
    failure_reason: str | None = Field(None, alias="failureReason")
    failure_message: str | None = Field(None, alias="failureMessage")
    conditions: list[Condition] = Field(default_factory=list)


class ProviderMachine(_Record):
    """Provider-specific machine, the mutable record a scope commits."""

    api_version: str = Field("infrastructure.cluster.x-k8s.io/v1alpha1", alias="apiVersion")
    kind: str = "IonosCloudMachine"
    metadata: ObjectMeta
    spec: ProviderMachineSpec = Field(default_factory=ProviderMachineSpec)
    status: ProviderMachineStatus = Field(default_factory=ProviderMachineStatus)

    @property
    def created_at(self) -> datetime:
        """Creation timestamp, or the earliest possible time if unset."""
        return self.metadata.creation_timestamp or EPOCH

    def to_object(self) -> dict[str, Any]:
        """Serialize to the store's wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Secrets
# =============================================================================


class Secret(_Record):
    """Core ``v1`` Secret."""

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = "Secret"
    metadata: ObjectMeta
    type: str | None = None
    data: dict[str, str] = Field(default_factory=dict)

    def bootstrap_data(self) -> bytes:
        """Decode the bootstrap payload.

        Raises:
            ValueError: If the secret has no payload or it is not valid base64.
        """
        encoded = self.data.get(BOOTSTRAP_DATA_KEY)
        if encoded is None:
            raise ValueError(
                f"secret {self.metadata.key} has no '{BOOTSTRAP_DATA_KEY}' key"
            )
        try:
            return base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise ValueError(f"secret {self.metadata.key} holds invalid base64 data") from e
