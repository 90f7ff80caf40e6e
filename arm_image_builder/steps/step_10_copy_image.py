from __future__ import annotations

import logging
import os
from typing import Optional

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..errors import StepError
from ..lib.cancel import CancelToken
from ..lib.download import copy_file
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)

IMAGE_FILE_NAME = "image"


class CopyImageStep:
    """Copies the downloaded image to the output directory as the working image."""

    step_id = "10_copy_image"

    def __init__(self, cfg: BuildConfig, ui: Ui):
        self.cfg = cfg
        self.ui = ui
        self._created: Optional[str] = None

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        if not ctx.iso_path:
            raise StepError("no downloaded image; run the download step first")
        cancel.raise_if_cancelled()

        dst = os.path.join(self.cfg.output_directory, IMAGE_FILE_NAME)
        self.ui.say(f"Copying source image to {dst}")
        self._created = dst
        copy_file(ctx.iso_path, dst)
        ctx.image_file = dst
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        # A successful build keeps its image; a failed one leaves nothing behind.
        if self._created is None or not ctx.failed:
            return
        path, self._created = self._created, None
        if os.path.exists(path):
            logger.info("Removing partial image %s", path)
            os.remove(path)
