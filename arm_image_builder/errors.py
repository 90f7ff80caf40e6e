from __future__ import annotations

from typing import Iterable, List


class ArmImageError(Exception):
    """Base exception for all builder errors."""

    pass


class ConfigError(ArmImageError):
    """Raised by preparation; carries every problem found, not just the first."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(
            "configuration is invalid:\n" + "\n".join(f"* {e}" for e in self.errors)
        )


class StepError(ArmImageError):
    """Fatal failure inside a pipeline step."""

    pass


class CommandError(StepError):
    """A system tool exited with a non-zero status."""

    def __init__(self, argv: List[str], returncode: int, stderr: str = ""):
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(argv)}\n{stderr}".rstrip())


class ChecksumError(StepError):
    pass


class ProvisionError(StepError):
    pass


class BuildCanceled(ArmImageError):
    """Raised at a cancellation checkpoint."""

    pass


class BuildHalted(ArmImageError):
    """Terminal outcome of a run that was cancelled or halted without an error."""

    def __init__(self, message: str = "step canceled or halted"):
        super().__init__(message)
