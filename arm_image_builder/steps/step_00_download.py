from __future__ import annotations

import logging

from ..build_config import BuildConfig
from ..build_context import BuildContext
from ..lib.cancel import CancelToken
from ..lib.download import Cache, download
from ..pipeline import StepOutcome
from ..ui import Ui

logger = logging.getLogger(__name__)


class DownloadStep:
    step_id = "00_download"

    def __init__(self, cfg: BuildConfig, ui: Ui, cache: Cache):
        self.cfg = cfg
        self.ui = ui
        self.cache = cache

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        self.ui.say("Retrieving image...")
        ctx.iso_path = download(
            self.cfg.iso_urls,
            self.cfg.iso_checksum,
            self.cfg.iso_checksum_type,
            self.cache,
            cancel=cancel,
        )
        self.ui.message(f"Image: {ctx.iso_path}")
        return StepOutcome.CONTINUE

    def cleanup(self, ctx: BuildContext) -> None:
        # The cache outlives the build.
        pass
