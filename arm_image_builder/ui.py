from __future__ import annotations

import logging
from typing import Protocol


class Ui(Protocol):
    """Sink for human-readable progress messages."""

    def say(self, message: str) -> None:
        ...

    def message(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingUi:
    def __init__(self, name: str = "arm_image_builder.ui"):
        self._logger = logging.getLogger(name)

    def say(self, message: str) -> None:
        self._logger.info("==> %s", message)

    def message(self, message: str) -> None:
        self._logger.info("    %s", message)

    def error(self, message: str) -> None:
        self._logger.error("%s", message)
