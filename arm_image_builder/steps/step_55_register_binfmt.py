from __future__ import annotations

import logging
import os
from typing import Optional

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.emulation import register_binfmt, unregister_binfmt
from ..lib.mounts import in_chroot
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)

DEFAULT_BINFMT_DIR = "/proc/sys/fs/binfmt_misc"


class RegisterBinfmtStep:
    step_id = "55_register_binfmt"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui
        self.entry: Optional[str] = None

    def binfmt_dir(self, root: str) -> str:
        for kind, _source, target in self.cfg.chroot_mounts:
            if kind == "binfmt_misc":
                return in_chroot(root, target)
        return in_chroot(root, DEFAULT_BINFMT_DIR)

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.mount_path or not ctx.qemu_in_chroot:
            raise StepError("emulator is not installed; run the install qemu step first")
        cancel.raise_if_cancelled()

        # Registrations are host-wide; the pid keeps concurrent builds apart.
        name = f"arm-image-builder-{os.getpid()}"
        self.ui.say(f"Registering {ctx.qemu_in_chroot} with binfmt_misc as {name}")
        self.entry = register_binfmt(self.binfmt_dir(ctx.mount_path), name, ctx.qemu_in_chroot)
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        if self.entry is None:
            return
        entry, self.entry = self.entry, None
        self.ui.say("Removing binfmt_misc registration")
        unregister_binfmt(entry)
