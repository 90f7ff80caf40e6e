from __future__ import annotations

import logging
from typing import List

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.mounts import MountEntry, in_chroot, mount_entry, umount_all
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class MountExtraStep:
    """Mounts host virtual filesystems (proc, sys, dev, ...) into the chroot."""

    step_id = "45_mount_extra"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui
        self.mounted: List[MountEntry] = []

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.mount_path:
            raise StepError("chroot root is not mounted; run the mount image step first")

        self.ui.say("Mounting additional paths within the chroot")
        for kind, source, target in self.cfg.chroot_mounts:
            entry = MountEntry(source=source, target=in_chroot(ctx.mount_path, target), kind=kind)
            self.ui.message(f"{kind} {source} -> {target}")
            mount_entry(entry, cancel=cancel)
            self.mounted.append(entry)
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        if not self.mounted:
            return
        self.ui.say("Unmounting additional paths")
        self.mounted = umount_all(self.mounted)
