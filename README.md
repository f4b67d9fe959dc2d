# jivaop

`jivaop` holds the logic behind running replicated Jiva block volumes on
Kubernetes: the volume resources, the objects built for them, a reconciler
that drives a volume through its phases, and node-side helpers for mounts,
usage statistics and filesystem resize.

## Modules

- **`jivaop.api`** – the `JivaVolume` and `JivaVolumePolicy` resources (and
  their `...List` forms) with their specs, statuses, phases
  (`JivaVolumePhase`) and version bookkeeping (`VersionDetails`,
  `VersionStatus`, `VersionState`). Resources convert to and from plain
  dictionaries with `to_dict()` / `from_dict()`; `JivaVolume.deep_copy()`
  returns an independent copy.
- **`jivaop.config`** – the driver settings `Config` and `default_config()`.
- **`jivaop.jiva_client`** – `ControllerClient`, a JSON-over-HTTP client for
  the v1 API of a Jiva controller (`get`, `post`, `do`). Failures are raised
  as `JivaClientError`.
- **`jivaop.policy`** – the default volume policy (`default_policy_spec()`),
  `validate_policy_spec()` which fills in replication factor, storage class,
  resources and tolerations, the standard labels, annotations, ports and
  images (`get_image()` reads an environment variable or falls back to a
  default), and size parsing (`ram_in_bytes`, `capacity_in_bytes`).
- **`jivaop.manifests`** – builds the controller service, controller
  deployment, replica stateful set and pod disruption budget for a volume as
  plain dictionaries, and `set_controller_reference()` to mark a volume as
  the controlling owner of an object.
- **`jivaop.reconciler`** – `JivaVolumeReconciler`, which bootstraps a
  volume's objects, syncs its status from the controller's `/stats`,
  performs single-replica scale-up and reconciles versions. Events are kept
  by an `EventRecorder`; failures raise `ReconcileError`.
- **`jivaop.driver.stats`** – byte and inode usage of a filesystem
  (`get_statistics`), block device size via `blockdev` (`block_size_bytes`)
  and `is_block_device`.
- **`jivaop.driver.mounts`** – `Mounter` (reads `/proc/mounts`, runs
  `mount`/`umount`), `parse_mounts`, path helpers, and waits for a volume to
  become ready (`wait_for_volume_to_be_ready`) or its iSCSI portal reachable
  (`wait_for_volume_to_be_reachable`).
- **`jivaop.driver.resize`** – `ResizeInput`, which rescans the iSCSI session
  with `iscsiadm` and grows an ext4 (`resize2fs`) or xfs (`xfs_growfs`)
  filesystem.

The package has no third-party dependencies.

## Examples

Fill in the defaults of a user-supplied policy:

```python
from jivaop.api import JivaVolumePolicySpec
from jivaop.policy import validate_policy_spec

policy = JivaVolumePolicySpec.from_dict({"replicaSC": "fast-local"})
validate_policy_spec(policy)
print(policy.target.replication_factor)   # 3
print(policy.replica_sc)                  # fast-local
```

Turn a human-readable capacity into bytes:

```python
from jivaop.policy import capacity_in_bytes

capacity_in_bytes("5Gi")   # 5368709120
```

Build the objects that serve a volume:

```python
from jivaop.api import JivaVolume
from jivaop.manifests import controller_service, replica_pod_disruption_budget

volume = JivaVolume.from_dict({
    "metadata": {"name": "pvc-1234", "namespace": "openebs"},
    "spec": {"pv": "pvc-1234", "capacity": "5Gi", "accessType": "mount"},
})
service = controller_service(volume, "3.0.0")
budget = replica_pod_disruption_budget(volume)
print(budget["spec"]["minAvailable"])
```

Run the reconciler against your own object store. The store has `get(kind,
namespace, name)`, which raises `NotFoundError` for a missing object,
`create(obj)`, `update(obj)` and `patch(obj, original)`:

```python
from jivaop.reconciler import JivaVolumeReconciler

reconciler = JivaVolumeReconciler(store, version="3.0.0")
reconciler.reconcile("openebs", "pvc-1234")
```

Read the mount table and the usage of a filesystem:

```python
from jivaop.driver.mounts import Mounter, list_contains
from jivaop.driver.stats import get_statistics

point = list_contains("/", Mounter().list())
for usage in get_statistics("/"):
    print(usage.unit.name, usage.used, usage.total)
```

Ask a Jiva controller for its stats:

```python
from jivaop.jiva_client import ControllerClient, JivaClientError

client = ControllerClient("10.0.0.5:9501")
try:
    stats = client.get("/stats")
except JivaClientError as exc:
    print("controller not reachable:", exc)
```

## What it does not do

- There is no command to run and no CSI gRPC server: the identity,
  controller and node services are not provided, nor are CSI capability
  checks or status codes.
- It does not talk to the Kubernetes API itself. The reconciler works
  through an object store you pass in, and nothing watches resources or
  runs the reconciler in a loop.
- It does not log in to or out of iSCSI targets; it only rescans sessions
  when resizing.

## Tests

The test suite uses pytest and is installed with the `test` extra.