from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .build_context import BuildContext
from .errors import BuildCanceled
from .lib.cancel import CancelToken
from .ui import Ui

logger = logging.getLogger(__name__)


class StepOutcome(enum.Enum):
    CONTINUE = "continue"
    HALT = "halt"
    CANCEL = "cancel"


class Step(Protocol):
    """A pipeline stage that acquires something in execute and releases it in cleanup."""

    step_id: str

    def execute(self, ctx: BuildContext, cancel: CancelToken) -> StepOutcome:
        ...

    def cleanup(self, ctx: BuildContext) -> None:
        """Release what execute acquired. Must be idempotent."""
        ...


@dataclass(frozen=True)
class PipelineResult:
    executed: List[str]
    cleaned: List[str]
    halted: bool
    cancelled: bool


class PipelineRunner:
    """Runs steps in order, then cleans up every entered step in reverse order.

    Cleanup runs whatever the outcome: success, a halting step, an exception or
    a cancellation. Cleanup errors are logged and never replace the run's error.
    """

    def __init__(self, steps: Sequence[Step], ui: Optional[Ui] = None):
        self.steps = list(steps)
        self.ui = ui
        self.token = CancelToken()

    def cancel(self) -> None:
        logger.info("Cancellation requested")
        self.token.cancel()

    def run(self, ctx: BuildContext) -> PipelineResult:
        entered: List[Step] = []
        cleaned: List[str] = []

        try:
            for step in self.steps:
                if self.token.cancelled:
                    ctx.cancelled = True
                    break

                logger.info("Running step %s", step.step_id)
                entered.append(step)
                try:
                    outcome = step.execute(ctx, self.token)
                except BuildCanceled:
                    logger.info("Step %s stopped by cancellation", step.step_id)
                    ctx.cancelled = True
                    break
                except Exception as e:
                    if self.token.cancelled:
                        logger.info("Step %s failed after cancellation: %s", step.step_id, e)
                        ctx.cancelled = True
                    else:
                        logger.exception("Step %s failed", step.step_id)
                        if self.ui is not None:
                            self.ui.error(str(e))
                        ctx.error = e
                        ctx.halted = True
                    break

                if outcome is StepOutcome.CANCEL or self.token.cancelled:
                    ctx.cancelled = True
                    break
                if outcome is StepOutcome.HALT:
                    ctx.halted = True
                    break
        except BaseException:
            # Interrupted outside the cancel protocol; still tear down.
            ctx.cancelled = True
            raise
        finally:
            cleaned = self._cleanup(entered, ctx)
        return PipelineResult(
            executed=[s.step_id for s in entered],
            cleaned=cleaned,
            halted=ctx.halted,
            cancelled=ctx.cancelled,
        )

    def _cleanup(self, entered: Sequence[Step], ctx: BuildContext) -> List[str]:
        cleaned: List[str] = []
        for step in reversed(entered):
            logger.info("Cleaning up step %s", step.step_id)
            try:
                step.cleanup(ctx)
            except Exception as e:
                logger.warning("Cleanup of %s failed: %s", step.step_id, e, exc_info=True)
                if self.ui is not None:
                    self.ui.error(f"Cleanup of {step.step_id} failed: {e}")
            cleaned.append(step.step_id)
        return cleaned
