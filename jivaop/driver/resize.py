"""Growing the filesystem of an iSCSI volume after its device was expanded."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from jivaop.driver.mounts import MountPoint

log = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], "tuple[int, str]"]


def _run_combined(args: Sequence[str]) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        return -1, str(exc)
    return proc.returncode, proc.stdout.decode("utf-8", errors="replace")


@dataclass
class ResizeInput:
    """What is needed to rescan a session and grow the filesystem on it."""

    volume_path: str
    fs_type: str = ""
    iqn: str = ""
    target_portal: str = ""
    run: Runner = field(default=_run_combined, repr=False)

    def _check(self, args: list[str], what: str) -> None:
        code, output = self.run(args)
        if code != 0:
            log.error("iscsi: %s failed error: %s", what, output)
            raise RuntimeError(f"iscsi: {what} failed: exit status {code}: {output}")

    def volume(self, mount_points: Iterable[MountPoint]) -> None:
        """Rescan and grow the filesystem mounted at the volume path, if any.

        Only ext4 and xfs are grown. Raises RuntimeError when a command fails.
        """
        for point in mount_points:
            if point.path != self.volume_path:
                continue
            self.rescan()
            if self.fs_type == "ext4":
                self.resize_ext4(point.device)
            elif self.fs_type == "xfs":
                self.resize_xfs(self.volume_path)
            break

    def rescan(self) -> None:
        """Rescan the iSCSI session of the target."""
        log.info("Rescan ISCSI session")
        self._check(
            ["iscsiadm", "-m", "node", "-T", self.iqn, "-P", self.target_portal, "--rescan"],
            "rescan",
        )

    def resize_ext4(self, path: str) -> None:
        """Grow an ext4 filesystem to the size of its device."""
        self._check(["resize2fs", path], "resize")

    def resize_xfs(self, path: str) -> None:
        """Grow a mounted xfs filesystem to the size of its device."""
        self._check(["xfs_growfs", path], "resize")