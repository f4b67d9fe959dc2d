import copy

import pytest

from jivaop.api import (
    JivaVolume,
    JivaVolumePhase,
    JivaVolumePolicy,
    JivaVolumePolicySpec,
    JivaVolumeSpec,
    ObjectMeta,
    ReplicaStatus,
    TargetSpec,
    VersionState,
)
from jivaop.manifests import controller_deployment, replica_statefulset
from jivaop.policy import DEFAULT_REPLICATION_FACTOR, DEFAULT_STORAGE_CLASS, base_target_tolerations
from jivaop.reconciler import (
    EventRecorder,
    JivaVolumeReconciler,
    NotFoundError,
    ReconcileError,
)

VERSION = "2.6.0"
NS = "openebs"
NAME = "pvc-1"
CLUSTER_IP = "10.0.0.7"


class FakeClient:
    def __init__(self, fail_create=(), fail_get=()):
        self.objects = {}
        self.created = []
        self.patched = []
        self.fail_create = set(fail_create)
        self.fail_get = set(fail_get)
        self._rv = 0

    @staticmethod
    def _key(obj):
        meta = obj["metadata"]
        return (obj["kind"], meta.get("namespace", ""), meta["name"])

    def add(self, obj):
        self.objects[self._key(obj)] = copy.deepcopy(obj)

    def get(self, kind, namespace, name):
        if kind in self.fail_get:
            raise RuntimeError("boom")
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(f"{kind} {name} not found") from None

    def create(self, obj):
        if obj["kind"] in self.fail_create:
            raise RuntimeError("create refused")
        obj = copy.deepcopy(obj)
        if obj["kind"] == "Service":
            obj["spec"]["clusterIP"] = CLUSTER_IP
        self.objects[self._key(obj)] = obj
        self.created.append(obj["kind"])
        return copy.deepcopy(obj)

    def update(self, obj):
        key = self._key(obj)
        if key not in self.objects:
            raise NotFoundError("missing")
        self._rv += 1
        obj = copy.deepcopy(obj)
        obj["metadata"]["resourceVersion"] = str(self._rv)
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def patch(self, obj, original):
        self.objects[self._key(obj)] = copy.deepcopy(obj)
        self.patched.append(obj["kind"])
        return copy.deepcopy(obj)


def stats_factory(payload):
    addresses = []

    class _Client:
        def __init__(self, address):
            addresses.append(address)

        def get(self, path):
            if isinstance(payload, Exception):
                raise payload
            return payload

    return _Client, addresses


def make_volume(current=VERSION, desired=VERSION):
    vol = JivaVolume(
        metadata=ObjectMeta(name=NAME, namespace=NS, uid="uid-1"),
        spec=JivaVolumeSpec(pv=NAME, capacity="1Gi"),
    )
    vol.version_details.desired = desired
    vol.version_details.status.current = current
    return vol


def make_reconciler(client, stats=None, **kwargs):
    factory, _ = stats_factory(stats if stats is not None else {})
    return JivaVolumeReconciler(
        client, VERSION, stats_client_factory=factory, sleep=lambda _s: None, environ={}, **kwargs
    )


def stored_volume(client):
    return JivaVolume.from_dict(client.objects[("JivaVolume", NS, NAME)])


def test_event_recorder_keeps_events():
    recorder = EventRecorder()
    recorder.event(make_volume(), "Warning", "Bootstrap", "went wrong")
    assert recorder.events == [(NAME, "Warning", "Bootstrap", "went wrong")]


def test_reconcile_missing_volume_does_nothing():
    client = FakeClient()
    make_reconciler(client).reconcile(NS, NAME)
    assert client.objects == {}
    assert client.created == []


def test_reconcile_bootstraps_new_volume():
    client = FakeClient()
    client.add(make_volume().to_dict())
    make_reconciler(client).reconcile(NS, NAME)

    assert client.created == ["Service", "Deployment", "StatefulSet", "PodDisruptionBudget"]
    vol = stored_volume(client)
    assert vol.status.phase is JivaVolumePhase.SYNCING
    assert vol.spec.iscsi_spec.target_ip == CLUSTER_IP
    assert vol.spec.iscsi_spec.target_port == 3260
    assert vol.spec.iscsi_spec.iqn == "iqn.2016-09.com.openebs.jiva:" + NAME
    assert vol.spec.policy.target.replication_factor == DEFAULT_REPLICATION_FACTOR
    assert vol.spec.desired_replication_factor == DEFAULT_REPLICATION_FACTOR

    svc = client.objects[("Service", NS, NAME + "-jiva-ctrl-svc")]
    assert svc["metadata"]["ownerReferences"][0]["name"] == NAME
    deploy = client.objects[("Deployment", NS, NAME + "-jiva-ctrl")]
    assert CLUSTER_IP in deploy["spec"]["template"]["spec"]["containers"][0]["args"]


def test_bootstrap_failure_marks_volume_failed():
    client = FakeClient(fail_create={"Deployment"})
    vol = make_volume()
    client.add(vol.to_dict())
    reconciler = make_reconciler(client)
    with pytest.raises(RuntimeError, match="create refused"):
        reconciler.bootstrap(vol)
    assert stored_volume(client).status.phase is JivaVolumePhase.FAILED
    assert [e[2] for e in reconciler.recorder.events] == ["Bootstrap"]
    assert "StatefulSet" not in client.created


def test_reconcile_rejects_version_mismatch():
    client = FakeClient()
    client.add(make_volume(current="1.0.0", desired="1.0.0").to_dict())
    with pytest.raises(ReconcileError, match="jiva operator version is 2.6.0"):
        make_reconciler(client).reconcile(NS, NAME)
    assert client.created == []


def test_should_reconcile_accepts_matching_version():
    assert make_reconciler(FakeClient()).should_reconcile(make_volume()) is True


def test_populate_policy_defaults_without_annotation():
    vol = make_volume()
    make_reconciler(FakeClient()).populate_policy(vol)
    assert vol.spec.policy.replica_sc == DEFAULT_STORAGE_CLASS
    assert vol.spec.policy.target.tolerations == base_target_tolerations()


def test_populate_policy_from_named_policy():
    client = FakeClient()
    policy = JivaVolumePolicy(
        metadata=ObjectMeta(name="fast-policy", namespace=NS),
        spec=JivaVolumePolicySpec(
            replica_sc="fast",
            target=TargetSpec(tolerations=[{"key": "custom", "operator": "Exists"}]),
        ),
    )
    client.add(policy.to_dict())
    vol = make_volume()
    vol.metadata.annotations["openebs.io/volume-policy"] = "fast-policy"
    make_reconciler(client).populate_policy(vol)
    assert vol.spec.policy.replica_sc == "fast"
    assert vol.spec.policy.target.replication_factor == DEFAULT_REPLICATION_FACTOR
    assert vol.spec.policy.target.tolerations[-1] == {"key": "custom", "operator": "Exists"}
    assert vol.spec.policy.target.tolerations[:-1] == base_target_tolerations()


def test_populate_policy_missing_policy_raises():
    vol = make_volume()
    vol.metadata.annotations["openebs.io/volume-policy"] = "absent"
    with pytest.raises(ReconcileError, match="failed to get volume policy absent"):
        make_reconciler(FakeClient()).populate_policy(vol)


def scaleup_volume(desired, actual, modes):
    vol = make_volume()
    vol.spec.desired_replication_factor = desired
    vol.spec.policy.target.replication_factor = actual
    vol.status.replica_count = len(modes)
    vol.status.replica_statuses = [ReplicaStatus(address=f"r{i}", mode=m) for i, m in enumerate(modes)]
    return vol


def test_is_scaleup_allowed_for_single_step():
    reconciler = make_reconciler(FakeClient())
    assert reconciler.is_scaleup(scaleup_volume(4, 3, ["RW", "RW", "RW"])) is True
    assert reconciler.recorder.events == []


@pytest.mark.parametrize(
    "desired, actual, modes",
    [
        (5, 3, ["RW", "RW", "RW"]),
        (4, 3, ["RW", "WO", "RW"]),
        (4, 3, ["RW", "RW"]),
    ],
)
def test_is_scaleup_refused_records_event(desired, actual, modes):
    reconciler = make_reconciler(FakeClient())
    assert reconciler.is_scaleup(scaleup_volume(desired, actual, modes)) is False
    assert [e[2] for e in reconciler.recorder.events] == ["ReplicaScaleup"]


def test_is_scaleup_false_without_request():
    reconciler = make_reconciler(FakeClient())
    assert reconciler.is_scaleup(scaleup_volume(3, 3, ["RW", "RW", "RW"])) is False
    assert reconciler.recorder.events == []


def test_perform_scaleup_patches_statefulset_and_deployment():
    client = FakeClient()
    vol = scaleup_volume(4, 3, ["RW", "RW", "RW"])
    client.add(vol.to_dict())
    client.add(replica_statefulset(vol, VERSION, {}))
    client.add(controller_deployment(vol, VERSION, {}))

    make_reconciler(client).perform_scaleup(vol)

    sts = client.objects[("StatefulSet", NS, NAME + "-jiva-rep")]
    assert sts["spec"]["replicas"] == 4
    deploy = client.objects[("Deployment", NS, NAME + "-jiva-ctrl")]
    assert deploy["spec"]["template"]["spec"]["containers"][0]["env"][0]["value"] == "4"
    stored = stored_volume(client)
    assert stored.spec.policy.target.replication_factor == 4
    assert stored.status.phase is JivaVolumePhase.SYNCING


def test_perform_scaleup_without_statefulset_raises():
    client = FakeClient()
    vol = scaleup_volume(4, 3, ["RW", "RW", "RW"])
    client.add(vol.to_dict())
    with pytest.raises(NotFoundError):
        make_reconciler(client).perform_scaleup(vol)


@pytest.mark.parametrize(
    "target_status, phase",
    [("RW", JivaVolumePhase.READY), ("RO", JivaVolumePhase.SYNCING), ("", JivaVolumePhase.UNKNOWN)],
)
def test_update_status_from_stats(target_status, phase):
    client = FakeClient()
    vol = make_volume()
    vol.spec.iscsi_spec.target_ip = CLUSTER_IP
    client.add(vol.to_dict())
    payload = {
        "TargetStatus": target_status,
        "Replicas": [{"Address": "tcp://r0:9502", "Mode": "RW"}],
    }
    factory, addresses = stats_factory(payload)
    reconciler = JivaVolumeReconciler(client, VERSION, stats_client_factory=factory)
    reconciler.update_status_from_stats(vol)

    assert addresses == [CLUSTER_IP + ":9501"]
    stored = stored_volume(client)
    assert stored.status.phase is phase
    assert stored.status.status == target_status
    assert stored.status.replica_count == 1
    assert stored.status.replica_statuses == [ReplicaStatus(address="tcp://r0:9502", mode="RW")]


def test_update_status_when_controller_unreachable():
    client = FakeClient()
    vol = make_volume()
    client.add(vol.to_dict())
    factory, _ = stats_factory(OSError("unreachable"))
    JivaVolumeReconciler(client, VERSION, stats_client_factory=factory).update_status_from_stats(vol)
    stored = stored_volume(client)
    assert stored.status.phase is JivaVolumePhase.UNKNOWN
    assert stored.status.replica_count == 0


def test_update_status_missing_volume_raises():
    with pytest.raises(ReconcileError, match="Failed to getAndUpdateVolumeStatus"):
        make_reconciler(FakeClient()).update_status_from_stats(make_volume())


def test_reconcile_ready_volume_refreshes_status():
    client = FakeClient()
    vol = make_volume()
    vol.status.phase = JivaVolumePhase.READY
    client.add(vol.to_dict())
    reconciler = make_reconciler(client, stats={"TargetStatus": "RO", "Replicas": []})
    reconciler.reconcile(NS, NAME)
    assert stored_volume(client).status.phase is JivaVolumePhase.SYNCING
    assert client.created == []


def test_reconcile_version_upgrades_stored_volume():
    client = FakeClient()
    vol = make_volume(current="1.0.0-ee", desired=VERSION)
    client.add(vol.to_dict())
    seen = []

    def upgrade(volume, kube):
        seen.append(volume.version_details.status.current)
        return volume

    make_reconciler(client, upgrades={"1.0.0": upgrade}).reconcile_version(vol)

    stored = stored_volume(client)
    assert stored.version_details.status.current == VERSION
    assert stored.version_details.status.state is VersionState.RECONCILE_COMPLETE
    assert seen == ["1.0.0-ee"]
    assert vol.version_details.status.current == "1.0.0-ee"


def test_reconcile_version_rejects_invalid_versions():
    vol = make_volume(current="bad", desired=VERSION)
    reconciler = make_reconciler(FakeClient(), is_current_version_valid=lambda v: v != "bad")
    with pytest.raises(ReconcileError, match="invalid current version bad"):
        reconciler.reconcile_version(vol)
    reconciler = make_reconciler(FakeClient(), is_desired_version_valid=lambda v: False)
    with pytest.raises(ReconcileError, match="invalid desired version"):
        reconciler.reconcile_version(vol)


def test_reconcile_version_noop_when_equal():
    client = FakeClient()
    vol = make_volume()
    client.add(vol.to_dict())
    before = copy.deepcopy(client.objects)
    make_reconciler(client).reconcile_version(vol)
    assert client.objects == before