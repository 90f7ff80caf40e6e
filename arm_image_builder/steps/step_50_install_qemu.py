from __future__ import annotations

import logging
import os
from typing import Optional

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.emulation import InstalledInterpreter, install_interpreter, qemu_env, remove_interpreter
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class InstallQemuStep:
    step_id = "50_install_qemu"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui
        self.installed: Optional[InstalledInterpreter] = None

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.mount_path:
            raise StepError("chroot root is not mounted; run the mount image step first")
        cancel.raise_if_cancelled()

        env = qemu_env(self.cfg.qemu_args)
        self.ui.say(f"Installing {os.path.basename(self.cfg.qemu_binary)} into the chroot")
        self.installed = install_interpreter(self.cfg.qemu_binary, ctx.mount_path)

        ctx.qemu_in_chroot = self.installed.in_chroot
        ctx.qemu_env = env
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        if self.installed is None:
            return
        installed, self.installed = self.installed, None
        try:
            remove_interpreter(installed)
        except OSError as e:
            logger.warning("Could not remove %s: %s", installed.host_path, e)
