from __future__ import annotations

import logging
import os
import tempfile
from typing import List, Optional

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.mounts import MountEntry, in_chroot, mount_entry, order_by_depth, umount_all
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class MountImageStep:
    """Mounts the image partitions under a fresh chroot root.

    image_mounts[i] is the mount point of partition i+1; an empty entry leaves
    that partition unmounted. Parents are mounted before the paths nested in them.
    """

    step_id = "40_mount_image"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui
        self.root: Optional[str] = None
        self.mounted: List[MountEntry] = []

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        mounts = self.cfg.image_mounts
        if len(mounts) > len(ctx.partitions):
            raise StepError(
                f"{len(mounts)} image mounts configured but the image has only "
                f"{len(ctx.partitions)} partition(s)"
            )

        self.root = tempfile.mkdtemp(prefix="arm-image-")
        self.ui.say(f"Mounting image partitions under {self.root}")

        planned = [(i, m) for i, m in enumerate(mounts) if m]
        for i, mount_point in order_by_depth(planned):
            entry = MountEntry(
                source=ctx.partitions[i].path,
                target=in_chroot(self.root, mount_point),
                kind="",
                primary=True,
            )
            self.ui.message(f"{entry.source} -> {mount_point}")
            mount_entry(entry, cancel=cancel)
            self.mounted.append(entry)

        ctx.mount_path = self.root
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        if self.mounted:
            self.ui.say("Unmounting image partitions")
            failed = umount_all(self.mounted)
            self.mounted = failed
            if failed:
                # The root still has something mounted in it; leave it in place.
                return

        if self.root is not None:
            root, self.root = self.root, None
            try:
                os.rmdir(root)
            except OSError as e:
                logger.warning("Could not remove chroot root %s: %s", root, e)
