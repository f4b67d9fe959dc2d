"""Resource types for the openebs.io/v1alpha1 API group."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

GROUP = "openebs.io"
VERSION = "v1alpha1"
GROUP_VERSION = f"{GROUP}/{VERSION}"

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _omit_empty(data: dict[str, Any], *keys: str) -> dict[str, Any]:
    """Drop the given keys whose values are empty, like JSON omitempty."""
    for key in keys:
        value = data.get(key)
        if value is None or value is False or value == 0 or value == "" or value == [] or value == {}:
            data.pop(key, None)
    return data


class JivaVolumePhase(str, Enum):
    """Lifecycle phase of a JivaVolume."""

    PENDING = "Pending"
    SYNCING = "Syncing"
    FAILED = "Failed"
    UNKNOWN = "Unknown"
    READY = "Ready"
    DELETING = "Deleting"


class VersionState(str, Enum):
    """State of a version reconciliation."""

    RECONCILE_COMPLETE = "Reconciled"
    RECONCILE_IN_PROGRESS = "ReconcileInProgress"
    RECONCILE_PENDING = "ReconcilePending"


@dataclass
class ObjectMeta:
    """The subset of object metadata the operator works with."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    deletion_timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "resourceVersion": self.resource_version,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "ownerReferences": copy.deepcopy(self.owner_references),
            "deletionTimestamp": _format_time(self.deletion_timestamp),
        }
        return _omit_empty(data, *list(data))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ObjectMeta:
        data = data or {}
        return cls(
            name=data.get("name") or "",
            namespace=data.get("namespace") or "",
            uid=data.get("uid") or "",
            resource_version=data.get("resourceVersion") or "",
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=copy.deepcopy(data.get("ownerReferences") or []),
            deletion_timestamp=_parse_time(data.get("deletionTimestamp")),
        )


@dataclass
class ISCSISpec:
    """Where the iSCSI target of a volume can be reached."""

    target_ip: str = ""
    target_port: int = 0
    iqn: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"targetIP": self.target_ip, "targetPort": self.target_port, "iqn": self.iqn}
        return _omit_empty(data, "targetIP", "targetPort", "iqn")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ISCSISpec:
        data = data or {}
        return cls(
            target_ip=data.get("targetIP") or "",
            target_port=int(data.get("targetPort") or 0),
            iqn=data.get("iqn") or "",
        )


@dataclass
class MountInfo:
    """Paths at which a volume is staged and published on a node."""

    staging_path: str = ""
    target_path: str = ""
    fs_type: str = ""
    device_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {
            "stagingPath": self.staging_path,
            "targetPath": self.target_path,
            "fsType": self.fs_type,
            "devicePath": self.device_path,
        }
        return _omit_empty(data, *list(data))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MountInfo:
        data = data or {}
        return cls(
            staging_path=data.get("stagingPath") or "",
            target_path=data.get("targetPath") or "",
            fs_type=data.get("fsType") or "",
            device_path=data.get("devicePath") or "",
        )


@dataclass
class ReplicaStatus:
    """Address and mode of one replica."""

    address: str = ""
    mode: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty({"address": self.address, "mode": self.mode}, "address", "mode")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReplicaStatus:
        data = data or {}
        return cls(address=data.get("address") or "", mode=data.get("mode") or "")


@dataclass
class PodTemplateResources:
    """Scheduling and resource settings shared by target and replica pods.

    Resources, tolerations and affinity are kept in their Kubernetes JSON form.
    """

    resources: dict[str, Any] | None = None
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    affinity: dict[str, Any] | None = None
    node_selector: dict[str, str] | None = None

    def _fields_to_dict(self) -> dict[str, Any]:
        data = {
            "resources": copy.deepcopy(self.resources),
            "tolerations": copy.deepcopy(self.tolerations),
            "affinity": copy.deepcopy(self.affinity),
            "nodeSelector": dict(self.node_selector) if self.node_selector is not None else None,
        }
        return _omit_empty(data, *list(data))

    @staticmethod
    def _fields_from_dict(data: dict[str, Any]) -> dict[str, Any]:
        selector = data.get("nodeSelector")
        return {
            "resources": copy.deepcopy(data.get("resources")),
            "tolerations": copy.deepcopy(data.get("tolerations") or []),
            "affinity": copy.deepcopy(data.get("affinity")),
            "node_selector": dict(selector) if selector is not None else None,
        }

    def to_dict(self) -> dict[str, Any]:
        return self._fields_to_dict()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PodTemplateResources:
        return cls(**cls._fields_from_dict(data or {}))


@dataclass
class TargetSpec(PodTemplateResources):
    """Settings for the jiva target deployment."""

    monitor: bool = False
    replication_factor: int = 0
    aux_resources: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = _omit_empty(
            {"monitor": self.monitor, "replicationFactor": self.replication_factor},
            "monitor",
            "replicationFactor",
        )
        data.update(self._fields_to_dict())
        if self.aux_resources is not None:
            data["auxResources"] = copy.deepcopy(self.aux_resources)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TargetSpec:
        data = data or {}
        return cls(
            monitor=bool(data.get("monitor", False)),
            replication_factor=int(data.get("replicationFactor") or 0),
            aux_resources=copy.deepcopy(data.get("auxResources")),
            **cls._fields_from_dict(data),
        )


@dataclass
class ReplicaSpec(PodTemplateResources):
    """Settings for the jiva replica statefulset."""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReplicaSpec:
        return cls(**cls._fields_from_dict(data or {}))


@dataclass
class JivaVolumePolicySpec:
    """Desired configuration for the pods that serve a volume."""

    replica_sc: str = ""
    enable_bufio: bool = False
    auto_scaling: bool = False
    service_account_name: str = ""
    priority_class_name: str = ""
    target: TargetSpec = field(default_factory=TargetSpec)
    replica: ReplicaSpec = field(default_factory=ReplicaSpec)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"replicaSC": self.replica_sc}
        _omit_empty(data, "replicaSC")
        data["enableBufio"] = self.enable_bufio
        data["autoScaling"] = self.auto_scaling
        if self.service_account_name:
            data["serviceAccountName"] = self.service_account_name
        if self.priority_class_name:
            data["priorityClassName"] = self.priority_class_name
        data["target"] = self.target.to_dict()
        data["replica"] = self.replica.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumePolicySpec:
        data = data or {}
        return cls(
            replica_sc=data.get("replicaSC") or "",
            enable_bufio=bool(data.get("enableBufio", False)),
            auto_scaling=bool(data.get("autoScaling", False)),
            service_account_name=data.get("serviceAccountName") or "",
            priority_class_name=data.get("priorityClassName") or "",
            target=TargetSpec.from_dict(data.get("target")),
            replica=ReplicaSpec.from_dict(data.get("replica")),
        )


@dataclass
class JivaVolumePolicyStatus:
    """Observed state of a JivaVolumePolicy."""

    phase: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumePolicyStatus:
        return cls(phase=(data or {}).get("phase") or "")


@dataclass
class JivaVolumePolicy:
    """A named policy that volumes refer to by annotation."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: JivaVolumePolicySpec = field(default_factory=JivaVolumePolicySpec)
    status: JivaVolumePolicyStatus = field(default_factory=JivaVolumePolicyStatus)
    api_version: str = GROUP_VERSION
    kind: str = "JivaVolumePolicy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumePolicy:
        data = data or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            spec=JivaVolumePolicySpec.from_dict(data.get("spec")),
            status=JivaVolumePolicyStatus.from_dict(data.get("status")),
            api_version=data.get("apiVersion") or GROUP_VERSION,
            kind=data.get("kind") or "JivaVolumePolicy",
        )


@dataclass
class JivaVolumePolicyList:
    """A list of JivaVolumePolicy objects."""

    items: list[JivaVolumePolicy] = field(default_factory=list)
    api_version: str = GROUP_VERSION
    kind: str = "JivaVolumePolicyList"

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {},
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumePolicyList:
        data = data or {}
        return cls(
            items=[JivaVolumePolicy.from_dict(item) for item in data.get("items") or []],
            api_version=data.get("apiVersion") or GROUP_VERSION,
            kind=data.get("kind") or "JivaVolumePolicyList",
        )


@dataclass
class JivaVolumeSpec:
    """Desired state of a JivaVolume."""

    pv: str = ""
    capacity: str = ""
    access_type: str = ""
    iscsi_spec: ISCSISpec = field(default_factory=ISCSISpec)
    mount_info: MountInfo = field(default_factory=MountInfo)
    policy: JivaVolumePolicySpec = field(default_factory=JivaVolumePolicySpec)
    desired_replication_factor: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pv": self.pv,
            "capacity": self.capacity,
            "accessType": self.access_type,
            "iscsiSpec": self.iscsi_spec.to_dict(),
            "mountInfo": self.mount_info.to_dict(),
            "policy": self.policy.to_dict(),
        }
        if self.desired_replication_factor:
            data["desiredReplicationFactor"] = self.desired_replication_factor
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumeSpec:
        data = data or {}
        return cls(
            pv=data.get("pv") or "",
            capacity=data.get("capacity") or "",
            access_type=data.get("accessType") or "",
            iscsi_spec=ISCSISpec.from_dict(data.get("iscsiSpec")),
            mount_info=MountInfo.from_dict(data.get("mountInfo")),
            policy=JivaVolumePolicySpec.from_dict(data.get("policy")),
            desired_replication_factor=int(data.get("desiredReplicationFactor") or 0),
        )


@dataclass
class JivaVolumeStatus:
    """Observed state of a JivaVolume."""

    status: str = ""
    replica_count: int = 0
    replica_statuses: list[ReplicaStatus] = field(default_factory=list)
    phase: JivaVolumePhase | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "status": self.status,
            "replicaCount": self.replica_count,
            "replicaStatus": [rep.to_dict() for rep in self.replica_statuses],
            "phase": self.phase.value if self.phase is not None else "",
        }
        return _omit_empty(data, *list(data))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumeStatus:
        data = data or {}
        phase = data.get("phase")
        return cls(
            status=data.get("status") or "",
            replica_count=int(data.get("replicaCount") or 0),
            replica_statuses=[ReplicaStatus.from_dict(r) for r in data.get("replicaStatus") or []],
            phase=JivaVolumePhase(phase) if phase else None,
        )


@dataclass
class VersionStatus:
    """Progress of reconciling a resource's version."""

    dependents_upgraded: bool = False
    current: str = ""
    state: VersionState | None = None
    message: str = ""
    reason: str = ""
    last_update_time: datetime | None = None

    def set_error_status(self, msg: str, err: BaseException | str) -> None:
        """Record an error message and its reason."""
        self.message = msg
        self.reason = str(err)
        self.last_update_time = _now()

    def set_in_progress_status(self) -> None:
        """Mark reconciliation as in progress."""
        self.state = VersionState.RECONCILE_IN_PROGRESS
        self.last_update_time = _now()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "dependentsUpgraded": self.dependents_upgraded,
            "current": self.current,
            "state": self.state.value if self.state is not None else "",
            "message": self.message,
            "reason": self.reason,
        }
        _omit_empty(data, *list(data))
        data["lastUpdateTime"] = _format_time(self.last_update_time)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VersionStatus:
        data = data or {}
        state = data.get("state")
        return cls(
            dependents_upgraded=bool(data.get("dependentsUpgraded", False)),
            current=data.get("current") or "",
            state=VersionState(state) if state else None,
            message=data.get("message") or "",
            reason=data.get("reason") or "",
            last_update_time=_parse_time(data.get("lastUpdateTime")),
        )


@dataclass
class VersionDetails:
    """Desired and current version of a resource."""

    auto_upgrade: bool = False
    desired: str = ""
    status: VersionStatus = field(default_factory=VersionStatus)

    def set_success_status(self) -> None:
        """Mark reconciliation complete: current becomes desired, errors clear."""
        self.status.current = self.desired
        self.status.message = ""
        self.status.reason = ""
        self.status.state = VersionState.RECONCILE_COMPLETE
        self.status.last_update_time = _now()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = _omit_empty(
            {"autoUpgrade": self.auto_upgrade, "desired": self.desired}, "autoUpgrade", "desired"
        )
        data["status"] = self.status.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VersionDetails:
        data = data or {}
        return cls(
            auto_upgrade=bool(data.get("autoUpgrade", False)),
            desired=data.get("desired") or "",
            status=VersionStatus.from_dict(data.get("status")),
        )


@dataclass
class JivaVolume:
    """A jiva volume custom resource."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: JivaVolumeSpec = field(default_factory=JivaVolumeSpec)
    status: JivaVolumeStatus = field(default_factory=JivaVolumeStatus)
    version_details: VersionDetails = field(default_factory=VersionDetails)
    api_version: str = GROUP_VERSION
    kind: str = "JivaVolume"

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
            "versionDetails": self.version_details.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolume:
        data = data or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            spec=JivaVolumeSpec.from_dict(data.get("spec")),
            status=JivaVolumeStatus.from_dict(data.get("status")),
            version_details=VersionDetails.from_dict(data.get("versionDetails")),
            api_version=data.get("apiVersion") or GROUP_VERSION,
            kind=data.get("kind") or "JivaVolume",
        )

    def deep_copy(self) -> JivaVolume:
        """Return an independent copy."""
        return copy.deepcopy(self)


@dataclass
class JivaVolumeList:
    """A list of JivaVolume objects."""

    items: list[JivaVolume] = field(default_factory=list)
    api_version: str = GROUP_VERSION
    kind: str = "JivaVolumeList"

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {},
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JivaVolumeList:
        data = data or {}
        return cls(
            items=[JivaVolume.from_dict(item) for item in data.get("items") or []],
            api_version=data.get("apiVersion") or GROUP_VERSION,
            kind=data.get("kind") or "JivaVolumeList",
        )