from __future__ import annotations

import logging
from typing import Optional

from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.loop import attach_image, detach_loop, list_partitions
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class MapImageStep:
    """Attaches the working image to a loop device and lists its partitions."""

    step_id = "30_map_image"

    def __init__(self, ui: Ui):
        self.ui = ui
        self.loop_device: Optional[str] = None

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.image_file:
            raise StepError("no working image; run the copy step first")

        self.ui.say(f"Mapping {ctx.image_file}")
        self.loop_device = attach_image(ctx.image_file, cancel=cancel)
        ctx.partitions = list_partitions(self.loop_device, cancel=cancel)
        for part in ctx.partitions:
            self.ui.message(f"partition {part.index}: {part.path}")
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        if self.loop_device is None:
            return
        loop_device, self.loop_device = self.loop_device, None
        self.ui.say(f"Unmapping {loop_device}")
        detach_loop(loop_device)
