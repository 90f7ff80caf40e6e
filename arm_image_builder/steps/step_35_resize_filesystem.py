from __future__ import annotations

import logging

from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.filesystem import grow_filesystem
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class ResizeFilesystemStep:
    step_id = "35_resize_filesystem"

    def __init__(self, ui: Ui):
        self.ui = ui

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.partitions:
            raise StepError("no mapped partitions; run the map step first")

        last = ctx.partitions[-1]
        self.ui.say(f"Growing filesystem on {last.path}")
        fs_type = grow_filesystem(last.path, cancel=cancel)
        self.ui.message(f"{fs_type} filesystem resized")
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        pass
