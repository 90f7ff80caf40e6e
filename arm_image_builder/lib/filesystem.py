from __future__ import annotations

import logging
from typing import Optional

from ..errors import CommandError, StepError
from .cancel import CancelToken
from .command import run_cmd

logger = logging.getLogger(__name__)

EXTENDABLE_FILESYSTEMS = frozenset({"ext2", "ext3", "ext4"})


def filesystem_type(dev: str, *, cancel: Optional[CancelToken] = None) -> str:
    """Return the filesystem type of a block device ("" if unknown)."""

    r = run_cmd(["blkid", "-o", "value", "-s", "TYPE", dev], check=False, cancel=cancel)
    return (r.stdout or "").strip()


def grow_filesystem(dev: str, *, cancel: Optional[CancelToken] = None) -> str:
    fs_type = filesystem_type(dev, cancel=cancel)
    if fs_type not in EXTENDABLE_FILESYSTEMS:
        raise StepError(
            f"Cannot grow filesystem on {dev}: type '{fs_type or 'unknown'}' is not one of "
            f"{', '.join(sorted(EXTENDABLE_FILESYSTEMS))}"
        )

    # resize2fs refuses to work on a filesystem that was not checked recently.
    # e2fsck exits 1 when it corrected errors, which is fine here.
    r = run_cmd(["e2fsck", "-f", "-y", dev], check=False, cancel=cancel)
    if r.returncode not in (0, 1):
        raise CommandError(r.argv, r.returncode, r.stderr)

    run_cmd(["resize2fs", dev], cancel=cancel)
    logger.info("Grew %s filesystem on %s", fs_type, dev)
    return fs_type
