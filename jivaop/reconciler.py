"""Reconciliation of JivaVolume resources into the objects that serve them."""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Protocol

from jivaop.api import (
    JivaVolume,
    JivaVolumePhase,
    JivaVolumePolicy,
    ReplicaStatus,
    VersionState,
)
from jivaop.jiva_client import ControllerClient
from jivaop.manifests import (
    controller_deployment,
    controller_service,
    replica_pod_disruption_budget,
    replica_statefulset,
    set_controller_reference,
)
from jivaop.policy import default_policy_spec, validate_policy_spec

log = logging.getLogger(__name__)

EVENT_WARNING = "Warning"
POLICY_ANNOTATION = "openebs.io/volume-policy"
ISCSI_IQN_PREFIX = "iqn.2016-09.com.openebs.jiva"
UPDATE_ERR_MSG = "Failed to update JivaVolume with service info"


class NotFoundError(Exception):
    """The requested object does not exist."""


class ReconcileError(Exception):
    """A reconciliation step failed."""


class KubeClient(Protocol):
    """The object store the reconciler reads and writes; objects are JSON dicts."""

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]: ...

    def create(self, obj: dict[str, Any]) -> dict[str, Any] | None: ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any] | None: ...

    def patch(self, obj: dict[str, Any], original: dict[str, Any]) -> dict[str, Any] | None: ...


UpgradeFunc = Callable[[JivaVolume, Any], JivaVolume]


@dataclass
class EventRecorder:
    """Keeps the events raised against objects, in order."""

    events: list[tuple[str, str, str, str]] = field(default_factory=list)

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        """Record an event of the given type and reason for obj."""
        name = getattr(obj, "name", "")
        self.events.append((name, event_type, reason, message))
        log.info("event %s %s on %s: %s", event_type, reason, name, message)


def _accept_any(_: str) -> bool:
    return True


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    """Look a key up ignoring case, as JSON decoding into struct fields does."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def _assign(target: JivaVolume, source: JivaVolume) -> None:
    for f in fields(target):
        setattr(target, f.name, getattr(source, f.name))


class JivaVolumeReconciler:
    """Moves the cluster state of a JivaVolume towards what it asks for."""

    def __init__(
        self,
        client: KubeClient,
        version: str,
        recorder: EventRecorder | None = None,
        stats_client_factory: Callable[[str], Any] = ControllerClient,
        environ: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        is_current_version_valid: Callable[[str], bool] = _accept_any,
        is_desired_version_valid: Callable[[str], bool] = _accept_any,
        upgrades: Mapping[str, UpgradeFunc] | None = None,
    ) -> None:
        self.client = client
        self.version = version
        self.recorder = recorder if recorder is not None else EventRecorder()
        self.stats_client_factory = stats_client_factory
        self.environ = environ
        self.sleep = sleep
        self.is_current_version_valid = is_current_version_valid
        self.is_desired_version_valid = is_desired_version_valid
        self.upgrades = dict(upgrades or {})

    # -- entry point -------------------------------------------------------

    def reconcile(self, namespace: str, name: str) -> None:
        """Run one reconciliation pass for the named volume."""
        try:
            instance = JivaVolume.from_dict(self.client.get("JivaVolume", namespace, name))
        except NotFoundError:
            return

        self.reconcile_version(instance)
        ok = self.should_reconcile(instance)

        phase = instance.status.phase
        if phase is JivaVolumePhase.READY:
            if self.is_scaleup(instance):
                log.info("performing scaleup operation on %s", instance.name)
                try:
                    self.perform_scaleup(instance)
                except Exception as exc:
                    self.recorder.event(
                        instance, EVENT_WARNING, "ReplicaScaleup",
                        f"failed to scaleup volume, due to error: {exc}",
                    )
                    raise ReconcileError(
                        f"failed to scaleup volume {instance.name}: {exc}"
                    ) from exc
            self.update_status_from_stats(instance)
        elif phase in (JivaVolumePhase.SYNCING, JivaVolumePhase.UNKNOWN):
            self.update_status_from_stats(instance)
        elif phase is JivaVolumePhase.DELETING:
            log.info("start tearing down jiva components, JivaVolume: %s", instance.name)
        elif phase in (None, JivaVolumePhase.PENDING, JivaVolumePhase.FAILED):
            if ok:
                log.info("start bootstraping jiva components, JivaVolume: %s", instance.name)
                self.bootstrap(instance)

    # -- checks ------------------------------------------------------------

    def is_scaleup(self, cr: JivaVolume) -> bool:
        """Whether a single-replica scale up is asked for and may proceed."""
        desired = cr.spec.desired_replication_factor
        actual = cr.spec.policy.target.replication_factor
        if desired <= actual:
            return False
        if actual != cr.status.replica_count:
            self._warn_scaleup(
                cr,
                f"replica count: {cr.status.replica_count} in status not equal to "
                f"replicationfactor: {actual}",
            )
            return False
        if any(rep.mode != "RW" for rep in cr.status.replica_statuses):
            self._warn_scaleup(cr, f"all replicas for volume {cr.name} should be in RW state")
            return False
        if desired - actual != 1:
            self._warn_scaleup(
                cr,
                f"only single replica scaleup is allowed, desired: {desired} actual: {actual}",
            )
            return False
        return True

    def _warn_scaleup(self, cr: JivaVolume, detail: str) -> None:
        self.recorder.event(
            cr, EVENT_WARNING, "ReplicaScaleup", f"failed to scaleup volume, {detail}"
        )
        log.error("failed to scaleup, %s", detail)

    def should_reconcile(self, cr: JivaVolume) -> bool:
        """True when the volume is at the operator's version; raises otherwise."""
        current = cr.version_details.status.current
        if current != self.version:
            raise ReconcileError(
                f"jiva operator version is {self.version} but volume {cr.name} "
                f"version is {current}"
            )
        return True

    # -- bootstrap ---------------------------------------------------------

    def bootstrap(self, cr: JivaVolume) -> None:
        """Create the policy, service, deployment, statefulset and budget in turn."""
        steps = (
            self.populate_policy,
            self.create_controller_service,
            self.create_controller_deployment,
            self.create_replica_statefulset,
            self.create_replica_pdb,
        )
        error: Exception | None = None
        for step in steps:
            try:
                step(cr)
            except Exception as exc:
                error = exc
                self.recorder.event(
                    cr, EVENT_WARNING, "Bootstrap",
                    f"failed to bootstrap volume, due to error: {exc}",
                )
                break
        self._finish_bootstrap(error, cr)
        if error is not None:
            raise error

    def _finish_bootstrap(self, error: Exception | None, cr: JivaVolume) -> None:
        if error is not None:
            cr.status.phase = JivaVolumePhase.FAILED
            log.error("failed to bootstrap volume %s, due to error: %s", cr.name, error)
        else:
            cr.status.phase = JivaVolumePhase.SYNCING
        try:
            self._update_volume(cr)
        except ReconcileError as exc:
            log.error("failed to update JivaVolume phase: %s", exc)

    def populate_policy(self, cr: JivaVolume) -> None:
        """Set the volume's policy from its named policy or the defaults."""
        policy_name = cr.metadata.annotations.get(POLICY_ANNOTATION, "")
        spec = default_policy_spec()
        if policy_name:
            try:
                data = self.client.get("JivaVolumePolicy", cr.namespace, policy_name)
            except Exception as exc:
                raise ReconcileError(
                    f"failed to get volume policy {policy_name}: {exc}"
                ) from exc
            spec = JivaVolumePolicy.from_dict(data).spec
            validate_policy_spec(spec)
        cr.spec.policy = spec
        cr.spec.desired_replication_factor = spec.target.replication_factor

    def _create_if_missing(self, cr: JivaVolume, obj: dict[str, Any], what: str) -> bool:
        meta = obj["metadata"]
        try:
            self.client.get(obj["kind"], meta["namespace"], meta["name"])
        except NotFoundError:
            set_controller_reference(cr, obj)
            log.info("Creating a new %s %s/%s", what, meta["namespace"], meta["name"])
            self.client.create(obj)
            return True
        except Exception as exc:
            raise ReconcileError(
                f"failed to get the {what} details: {meta['name']}: {exc}"
            ) from exc
        return False

    def create_controller_service(self, cr: JivaVolume) -> None:
        """Create the controller service and record its address on the volume."""
        if self._create_if_missing(cr, controller_service(cr, self.version), "service"):
            self.sleep(1)
        self._update_with_service_info(cr)

    def _update_with_service_info(self, cr: JivaVolume) -> None:
        try:
            svc = self.client.get("Service", cr.namespace, cr.name + "-jiva-ctrl-svc")
        except Exception as exc:
            raise ReconcileError(f"{UPDATE_ERR_MSG}, err: {exc}") from exc
        spec = svc.get("spec") or {}
        cr.spec.iscsi_spec.target_ip = spec.get("clusterIP") or ""
        found = False
        for port in spec.get("ports") or []:
            if port.get("name") == "iscsi":
                found = True
                cr.spec.iscsi_spec.target_port = int(port.get("port") or 0)
                cr.spec.iscsi_spec.iqn = f"{ISCSI_IQN_PREFIX}:{cr.spec.pv}"
        if not found:
            raise ReconcileError(
                f"{UPDATE_ERR_MSG}, err: can't find targetPort in target service spec: {svc}"
            )
        log.info("Updating JivaVolume with iscsi spec %s", cr.spec.iscsi_spec)
        cr.status.phase = JivaVolumePhase.PENDING
        try:
            self._store_update(cr)
            self._refresh(cr)
        except Exception as exc:
            raise ReconcileError(f"{UPDATE_ERR_MSG}, err: {exc}") from exc

    def create_controller_deployment(self, cr: JivaVolume) -> None:
        """Create the controller deployment unless it exists."""
        self._create_if_missing(
            cr, controller_deployment(cr, self.version, self.environ), "deployment"
        )

    def create_replica_statefulset(self, cr: JivaVolume) -> None:
        """Create the replica statefulset unless it exists."""
        try:
            sts = replica_statefulset(cr, self.version, self.environ)
        except ValueError as exc:
            raise ReconcileError(str(exc)) from exc
        self._create_if_missing(cr, sts, "statefulset")

    def create_replica_pdb(self, cr: JivaVolume) -> None:
        """Create the replicas' pod disruption budget unless it exists."""
        self._create_if_missing(cr, replica_pod_disruption_budget(cr), "pod disruption budget")

    # -- scale up ----------------------------------------------------------

    def perform_scaleup(self, cr: JivaVolume) -> None:
        """Raise the replica count of the statefulset and the controller."""
        desired = cr.spec.desired_replication_factor

        sts = self.client.get("StatefulSet", cr.namespace, cr.name + "-jiva-rep")
        new_sts = copy.deepcopy(sts)
        new_sts.setdefault("spec", {})["replicas"] = desired
        self.client.patch(new_sts, sts)

        deploy = self.client.get("Deployment", cr.namespace, cr.name + "-jiva-ctrl")
        new_deploy = copy.deepcopy(deploy)
        containers = new_deploy["spec"]["template"]["spec"]["containers"]
        for container in containers:
            if container.get("name") == "jiva-controller":
                container["env"][0]["value"] = str(desired)
        self.client.patch(new_deploy, deploy)

        cr.spec.policy.target.replication_factor = desired
        cr.status.phase = JivaVolumePhase.SYNCING
        try:
            self._update_volume(cr)
        except ReconcileError as exc:
            raise ReconcileError(f"failed to update JivaVolume phase: {exc}") from exc

    # -- status ------------------------------------------------------------

    def update_status_from_stats(self, cr: JivaVolume) -> None:
        """Fetch stats from the jiva controller and store them in the status."""
        try:
            self._refresh(cr)
        except Exception as exc:
            raise ReconcileError(f"Failed to getAndUpdateVolumeStatus, err: {exc}") from exc

        address = cr.spec.iscsi_spec.target_ip + ":9501"
        stats: Any = {}
        try:
            stats = self.stats_client_factory(address).get("/stats") or {}
        except Exception as exc:
            log.info("Failed to get volume stats, err: %s", exc)
            stats = {}
        if not isinstance(stats, Mapping):
            stats = {}

        target_status = _lookup(stats, "TargetStatus") or ""
        replicas = _lookup(stats, "Replicas") or []
        cr.status.status = target_status
        cr.status.replica_count = len(replicas)
        cr.status.replica_statuses = [
            ReplicaStatus(
                address=_lookup(rep, "Address") or "",
                mode=_lookup(rep, "Mode") or "",
            )
            for rep in replicas
        ]
        if target_status == "RW":
            cr.status.phase = JivaVolumePhase.READY
        elif target_status == "RO":
            cr.status.phase = JivaVolumePhase.SYNCING
        else:
            cr.status.phase = JivaVolumePhase.UNKNOWN

        try:
            self._update_volume(cr)
        except ReconcileError as exc:
            log.error("failed to update status: %s", exc)
        try:
            self._refresh(cr)
        except Exception as exc:
            log.error("failed to get JivaVolume: %s", exc)

    # -- versions ----------------------------------------------------------

    def reconcile_version(self, cr: JivaVolume) -> None:
        """Bring the stored volume's current version up to its desired one."""
        details = cr.version_details
        if details.status.current == details.desired:
            return
        if not self.is_current_version_valid(details.status.current):
            raise ReconcileError(f"invalid current version {details.status.current}")
        if not self.is_desired_version_valid(details.desired):
            raise ReconcileError(f"invalid desired version {details.desired}")

        upgraded = cr.deep_copy()
        if details.status.state is not VersionState.RECONCILE_IN_PROGRESS:
            upgraded.version_details.status.set_in_progress_status()
            self._update_volume(upgraded)
        self._check_exists(cr)

        path = upgraded.version_details.status.current.split("-")[0]
        upgrade = self.upgrades.get(path)
        if upgrade is not None:
            upgraded = upgrade(upgraded, self.client)
        upgraded.version_details.set_success_status()
        self._update_volume(upgraded)
        self._check_exists(cr)

    def _check_exists(self, cr: JivaVolume) -> None:
        try:
            self._refresh(cr)
        except Exception as exc:
            raise ReconcileError(f"{UPDATE_ERR_MSG}, err: {exc}") from exc

    # -- store helpers -----------------------------------------------------

    def _store_update(self, cr: JivaVolume) -> None:
        stored = self.client.update(cr.to_dict())
        if stored is not None:
            _assign(cr, JivaVolume.from_dict(stored))

    def _refresh(self, cr: JivaVolume) -> None:
        """Check the volume can still be read; the caller's copy is kept."""
        self.client.get("JivaVolume", cr.namespace, cr.name)

    def _update_volume(self, cr: JivaVolume) -> None:
        try:
            self._store_update(cr)
        except Exception as exc:
            raise ReconcileError(f"failed to update JivaVolume, err: {exc}") from exc
        try:
            self._refresh(cr)
        except Exception as exc:
            raise ReconcileError(f"failed to get JivaVolume, err: {exc}") from exc