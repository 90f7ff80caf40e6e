from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from .artifact import Artifact
from .build_config import BuildConfig, prepare_config
from .build_context import BuildContext
from .errors import ArmImageError, BuildHalted
from .hooks import Hook
from .lib.chroot import command_wrapper
from .lib.download import Cache
from .pipeline import PipelineResult, PipelineRunner, Step
from .steps import (
    ChrootProvisionStep,
    CopyImageStep,
    DownloadStep,
    InstallQemuStep,
    MapImageStep,
    MountExtraStep,
    MountImageStep,
    RegisterBinfmtStep,
    ResizeFilesystemStep,
    ResizeLastPartitionStep,
)
from .ui import Ui

logger = logging.getLogger(__name__)


class CancelWatcher(threading.Thread):
    """Waits for a cancel request during a run and forwards it to the hook."""

    POLL_INTERVAL_S = 0.2

    def __init__(self, requested: threading.Event, hook: Hook):
        super().__init__(name="cancel-watcher", daemon=True)
        self.requested = requested
        self.hook = hook
        self.done = threading.Event()

    def run(self) -> None:
        while not self.done.is_set():
            if self.requested.wait(self.POLL_INTERVAL_S):
                if self.done.is_set():
                    return
                self.hook.cancel()
                return

    def stop(self) -> None:
        self.done.set()
        self.join()


class Builder:
    def __init__(self) -> None:
        self.config: Optional[BuildConfig] = None
        self.runner: Optional[PipelineRunner] = None
        self.last_result: Optional[PipelineResult] = None
        self._cancel_requested = threading.Event()

    def prepare(self, raw: Dict[str, Any], build_name: Optional[str] = None) -> List[str]:
        """Validate configuration. Returns warnings; raises ConfigError listing every problem."""

        self.config, warnings = prepare_config(raw, build_name)
        for w in warnings:
            logger.warning("%s", w)
        return warnings

    def build_steps(self, ui: Ui, hook: Hook, cache: Cache) -> List[Step]:
        cfg = self.config
        if cfg is None:
            raise ArmImageError("prepare() must be called before run()")

        resize = cfg.last_partition_extra_size > 0

        steps: List[Step] = [
            DownloadStep(cfg, ui, cache),
            CopyImageStep(cfg, ui),
        ]
        if resize:
            steps.append(ResizeLastPartitionStep(cfg, ui))
        steps.append(MapImageStep(ui))
        if resize:
            steps.append(ResizeFilesystemStep(ui))
        steps += [
            MountImageStep(cfg, ui),
            MountExtraStep(cfg, ui),
            InstallQemuStep(cfg, ui),
            RegisterBinfmtStep(cfg, ui),
            ChrootProvisionStep(ui, hook, command_wrapper(cfg.command_wrapper, {"build_name": cfg.build_name})),
        ]
        return steps

    def run(self, ui: Ui, hook: Hook, cache: Cache) -> Artifact:
        """Run the pipeline; returns the image artifact or raises the terminal error."""

        steps = self.build_steps(ui, hook, cache)
        # A request left over from an earlier run must not stop this one.
        self._cancel_requested.clear()
        self.runner = PipelineRunner(steps, ui=ui)
        ctx = BuildContext()

        watcher = CancelWatcher(self._cancel_requested, hook)
        watcher.start()
        try:
            self.last_result = self.runner.run(ctx)
        finally:
            watcher.stop()
            self.runner = None

        if ctx.error is not None:
            raise ctx.error
        if ctx.cancelled or ctx.halted:
            raise BuildHalted()
        if not ctx.image_file:
            raise ArmImageError("pipeline finished without an image file")
        return Artifact(ctx.image_file)

    def cancel(self) -> None:
        """Stop a running build. Does nothing before run() has started."""

        runner = self.runner
        if runner is None:
            logger.info("No build running, nothing to cancel")
            return
        logger.info("Cancelling build")
        # Mark the token right away: a step whose command dies from the same
        # signal must see the cancellation, not report a failure.
        runner.cancel()
        self._cancel_requested.set()
