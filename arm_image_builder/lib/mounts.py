from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .cancel import CancelToken
from .command import run_cmd

logger = logging.getLogger(__name__)

DEFAULT_CHROOT_MOUNTS: List[Tuple[str, str, str]] = [
    ("proc", "proc", "/proc"),
    ("sysfs", "sysfs", "/sys"),
    ("bind", "/dev", "/dev"),
    ("devpts", "devpts", "/dev/pts"),
    ("binfmt_misc", "binfmt_misc", "/proc/sys/fs/binfmt_misc"),
]


@dataclass(frozen=True)
class MountEntry:
    source: str
    target: str
    kind: str  # "bind", a filesystem type, or "" to let mount(8) probe
    primary: bool = False  # image partition (True) or auxiliary mount (False)


def in_chroot(root: str, path: str) -> str:
    return os.path.join(root, path.lstrip("/"))


def mount_argv(entry: MountEntry) -> List[str]:
    if entry.kind == "bind":
        return ["mount", "--bind", entry.source, entry.target]
    if entry.kind:
        return ["mount", "-t", entry.kind, entry.source, entry.target]
    return ["mount", entry.source, entry.target]


def mount_entry(entry: MountEntry, *, cancel: Optional[CancelToken] = None) -> None:
    os.makedirs(entry.target, exist_ok=True)
    run_cmd(mount_argv(entry), cancel=cancel)


def umount_entry(entry: MountEntry) -> bool:
    """Unmount one entry. Failures are logged and reported, never raised."""

    r = run_cmd(["umount", entry.target], check=False)
    if r.returncode != 0:
        logger.warning("Failed to unmount %s: %s", entry.target, (r.stderr or "").strip())
        return False
    return True


def umount_all(entries: Sequence[MountEntry]) -> List[MountEntry]:
    """Unmount entries in reverse order; returns the ones that stayed mounted.

    The result keeps mount order, so passing it back in retries the remaining
    entries innermost first again.
    """

    failed = []
    for entry in reversed(entries):
        if not umount_entry(entry):
            failed.append(entry)
    failed.reverse()
    return failed


def order_by_depth(mount_points: Sequence[Tuple[int, str]]) -> List[Tuple[int, str]]:
    """Stable-sort (partition index, mount point) pairs so parents mount first."""

    def depth(p: str) -> int:
        return len([c for c in p.strip("/").split("/") if c])

    return sorted(mount_points, key=lambda item: depth(item[1]))
