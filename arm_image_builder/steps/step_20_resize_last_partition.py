from __future__ import annotations

import logging

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.partition import grow_last_partition
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class ResizeLastPartitionStep:
    step_id = "20_resize_last_partition"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.image_file:
            raise StepError("no working image; run the copy step first")

        extra = self.cfg.last_partition_extra_size
        self.ui.say(f"Extending last partition of {ctx.image_file} by {extra} bytes")
        entry = grow_last_partition(ctx.image_file, extra, cancel=cancel)
        self.ui.message(f"Partition {entry.number} extended")
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        # Only the image file was changed.
        pass
