"""Capacity and inode usage of volumes on a node."""

from __future__ import annotations

import os
import re
import stat
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum

_INT64_MAX = 2**63 - 1
_INT64_MIN = -(2**63)
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


class UsageUnit(IntEnum):
    """Unit a usage figure is counted in."""

    UNKNOWN = 0
    BYTES = 1
    INODES = 2


@dataclass
class VolumeUsage:
    """Available, total and used amounts in one unit."""

    available: int = 0
    total: int = 0
    used: int = 0
    unit: UsageUnit = UsageUnit.UNKNOWN


def get_statistics(volume_path: str | os.PathLike[str]) -> list[VolumeUsage]:
    """Byte and inode usage of the filesystem holding volume_path.

    Raises OSError when the filesystem cannot be queried.
    """
    st = os.statvfs(volume_path)
    block = st.f_frsize or st.f_bsize
    in_bytes = VolumeUsage(
        available=st.f_bavail * block,
        total=st.f_blocks * block,
        used=(st.f_blocks - st.f_bfree) * block,
        unit=UsageUnit.BYTES,
    )
    in_inodes = VolumeUsage(
        available=st.f_ffree,
        total=st.f_files,
        used=st.f_files - st.f_ffree,
        unit=UsageUnit.INODES,
    )
    return [in_bytes, in_inodes]


Runner = Callable[[Sequence[str]], "tuple[int, str]"]


def _run_combined(args: Sequence[str]) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        return -1, str(exc)
    return proc.returncode, proc.stdout.decode("utf-8", errors="replace")


def block_size_bytes(device_path: str, run: Runner | None = None) -> int:
    """Size in bytes of a block device, as reported by blockdev.

    run takes the command line and returns its exit status and combined
    output. Raises RuntimeError when the command fails and ValueError when
    its output is not a 64-bit integer.
    """
    runner = run if run is not None else _run_combined
    returncode, output = runner(["blockdev", "--getsize64", device_path])
    if returncode != 0:
        raise RuntimeError(
            f"error when getting size of block volume at path {device_path}: "
            f"output: {output}, err: exit status {returncode}"
        )
    text = output.strip()
    if not _INTEGER_RE.fullmatch(text):
        raise ValueError(f"failed to parse size {text} into int size, err: invalid syntax")
    size = int(text)
    if not _INT64_MIN <= size <= _INT64_MAX:
        raise ValueError(f"failed to parse size {text} into int size, err: value out of range")
    return size


def is_block_device(path: str | os.PathLike[str]) -> bool:
    """Whether path is a block device; raises OSError if it cannot be stat'ed."""
    return stat.S_ISBLK(os.stat(path).st_mode)