from __future__ import annotations

import logging

from ..build_context import BuildContext
from ..errors import StepError
from ..hooks import Hook
from ..lib.cancel import CancelToken
from ..lib.chroot import ChrootCommunicator, CommandWrapper
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class ChrootProvisionStep:
    step_id = "60_chroot_provision"

    def __init__(self, ui: Ui, hook: Hook, wrapper: CommandWrapper):
        self.ui = ui
        self.hook = hook
        self.wrapper = wrapper

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.mount_path:
            raise StepError("chroot root is not mounted; run the mount image step first")
        cancel.raise_if_cancelled()

        communicator = ChrootCommunicator(ctx.mount_path, self.wrapper, env=ctx.qemu_env)
        self.ui.say(f"Running provisioners in chroot {ctx.mount_path}")
        self.hook.run(self.ui, communicator)
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        pass
