"""Mount table access and readiness checks for volumes on a node."""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from jivaop.api import JivaVolume, JivaVolumePhase

log = logging.getLogger(__name__)

PROC_MOUNTS = "/proc/mounts"
# Gap in seconds between two passes of a mount monitor.
MONITOR_MOUNT_RETRY_TIMEOUT = 5
DEFAULT_MAX_RETRY_COUNT = 5

_FIELDS_PER_LINE = 6
_DIAL_TIMEOUT = 30.0

Runner = Callable[[Sequence[str]], "tuple[int, str]"]
VolumeFetcher = Callable[[str], JivaVolume]


@dataclass
class MountPoint:
    """One line of the mount table."""

    device: str
    path: str
    type: str = ""
    opts: list[str] = field(default_factory=list)
    freq: int = 0
    pass_: int = 0


def parse_mounts(text: str) -> list[MountPoint]:
    """Parse the contents of a mounts file such as /proc/mounts.

    Raises ValueError on a line that does not hold six fields or whose last
    two fields are not integers.
    """
    points = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) != _FIELDS_PER_LINE:
            raise ValueError(
                f"wrong number of fields (expected {_FIELDS_PER_LINE}, "
                f"got {len(fields)}): {line}"
            )
        device, path, fstype, opts, freq, pass_ = fields
        try:
            points.append(
                MountPoint(
                    device=device,
                    path=path,
                    type=fstype,
                    opts=opts.split(","),
                    freq=int(freq),
                    pass_=int(pass_),
                )
            )
        except ValueError as exc:
            raise ValueError(f"invalid mount line: {line}: {exc}") from exc
    return points


def _run_combined(args: Sequence[str]) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        return -1, str(exc)
    return proc.returncode, proc.stdout.decode("utf-8", errors="replace")


def _bind_options(options: Iterable[str]) -> tuple[bool, list[str], list[str]]:
    opts = list(options)
    bind_opts = ["bind"]
    if "_netdev" in opts:
        bind_opts.append("_netdev")
    remount_opts = ["bind", "remount"]
    remount_opts.extend(o for o in opts if o not in ("bind", "remount"))
    return "bind" in opts, bind_opts, remount_opts


class Mounter:
    """Mounts and unmounts with the system tools and reads the mount table."""

    def __init__(self, mounts_path: str = PROC_MOUNTS, run: Runner | None = None) -> None:
        self.mounts_path = mounts_path
        self.run = run if run is not None else _run_combined

    def list(self) -> list[MountPoint]:
        """All mount points currently in the mount table."""
        with open(self.mounts_path, encoding="utf-8") as fh:
            return parse_mounts(fh.read())

    def _do_mount(self, source: str, target: str, fstype: str, options: list[str]) -> None:
        args = []
        if fstype:
            args += ["-t", fstype]
        if options:
            args += ["-o", ",".join(options)]
        args += [source, target]
        code, output = self.run(["mount", *args])
        if code != 0:
            raise RuntimeError(
                f"mount failed: exit status {code}\nMounting command: mount\n"
                f"Mounting arguments: {' '.join(args)}\nOutput: {output}"
            )

    def mount(self, source: str, target: str, fstype: str, options: Iterable[str]) -> None:
        """Mount source at target; bind mounts are remounted with the options.

        Raises RuntimeError when the mount command fails.
        """
        opts = list(options)
        bind, bind_opts, remount_opts = _bind_options(opts)
        if bind:
            self._do_mount(source, target, fstype, bind_opts)
            self._do_mount(source, target, fstype, remount_opts)
            return
        self._do_mount(source, target, fstype, opts)

    def unmount(self, target: str) -> None:
        """Unmount target; raises RuntimeError when umount fails."""
        log.debug("Unmounting %s", target)
        code, output = self.run(["umount", target])
        if code != 0:
            raise RuntimeError(
                f"unmount failed: exit status {code}\nUnmounting arguments: {target}\n"
                f"Output: {output}"
            )

    def is_likely_not_mount_point(self, path: str) -> bool:
        """True when path sits on the same device as its parent directory.

        Raises OSError, such as FileNotFoundError, when path cannot be stat'ed.
        """
        st = os.stat(path)
        parent = os.stat(os.path.dirname(path.rstrip("/")) or "/")
        return st.st_dev == parent.st_dev

    def device_name(self, mount_path: str) -> tuple[str, int]:
        """Device mounted at mount_path and how many mount points it has."""
        points = self.list()
        try:
            resolved = os.path.realpath(mount_path, strict=True)
        except OSError:
            resolved = mount_path
        device = next((p.device for p in points if p.path == resolved), "")
        if not device:
            return "", 0
        return device, sum(1 for p in points if p.device == device)


def exists_path(path: str) -> bool:
    """Whether path exists, following symlinks; other stat errors are raised."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def make_file(path: str) -> None:
    """Create an empty file at path if there is none."""
    fd = os.open(os.path.normpath(path), os.O_RDONLY | os.O_CREAT, 0o644)
    os.close(fd)


def make_dir(path: str) -> None:
    """Create the directory path and its parents if missing."""
    os.makedirs(path, mode=0o755, exist_ok=True)


def list_contains(mount_path: str, mounts: Iterable[MountPoint]) -> MountPoint | None:
    """The first mount point at mount_path, or None."""
    return next((m for m in mounts if m.path == mount_path), None)


def verify_mount_opts(opts: Iterable[str], desired: str) -> bool:
    """Whether desired is among the mount options."""
    return desired in opts


def _is_ready(instance: JivaVolume) -> bool:
    return instance.status.phase is JivaVolumePhase.READY and instance.status.status == "RW"


def is_volume_ready(volume_id: str, fetch: VolumeFetcher) -> bool:
    """Whether the volume is Ready and read-write; fetch errors propagate."""
    return _is_ready(fetch(volume_id))


def _split_portal(target_portal: str) -> tuple[str, int]:
    host, sep, port = target_portal.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {target_portal}")
    return host.strip("[]"), int(port)


def _dial(target_portal: str) -> None:
    host, port = _split_portal(target_portal)
    with socket.create_connection((host, port), timeout=_DIAL_TIMEOUT):
        pass


def is_volume_reachable(target_portal: str) -> bool:
    """Whether a TCP connection to the portal "host:port" can be made."""
    try:
        _dial(target_portal)
    except OSError:
        return False
    log.debug("Target: {%s} is reachable to create connections", target_portal)
    return True


def wait_for_volume_to_be_reachable(
    target_portal: str,
    max_retries: int = DEFAULT_MAX_RETRY_COUNT,
    interval: float = 2.0,
) -> None:
    """Try to connect to the portal until it answers.

    Raises ConnectionError after max_retries failed attempts.
    """
    retries = 0
    while True:
        try:
            _dial(target_portal)
        except OSError as exc:
            error: OSError = exc
        else:
            log.debug("Target: {%s} is reachable to create connections", target_portal)
            return
        time.sleep(interval)
        retries += 1
        if retries >= max_retries:
            raise ConnectionError(
                f"iSCSI Target not reachable, TargetPortal: {{{target_portal}}}, "
                f"err: {{{error}}}"
            )


def wait_for_volume_to_be_ready(
    volume_id: str,
    fetch: VolumeFetcher,
    max_retries: int = DEFAULT_MAX_RETRY_COUNT,
    interval: float = 5.0,
) -> JivaVolume:
    """Poll the volume until it is Ready and read-write, and return it.

    The volume is fetched up to max_retries + 1 times. Raises TimeoutError
    when it never becomes ready; errors from fetch propagate.
    """
    retry = 0
    pause = 0.0
    while True:
        time.sleep(pause)
        instance = fetch(volume_id)
        retry += 1
        if _is_ready(instance):
            return instance
        if retry > max_retries:
            break
        pause = interval
        if instance.status.status == "RO":
            if instance.status.replica_statuses:
                log.warning(
                    "Volume: {%s} is in RO mode: replica status: {%s}",
                    volume_id, instance.status.replica_statuses,
                )
            else:
                log.warning("Volume: {%s} is not ready: replicas may not be connected", volume_id)
            continue
        log.warning(
            "Volume: {%s} is not ready: volume status is {%s}", volume_id, instance.status.status
        )
    raise TimeoutError(f"Max retry count exceeded, volume: {{{volume_id}}} is not ready")