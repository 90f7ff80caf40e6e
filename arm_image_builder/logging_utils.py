from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

DEFAULT_LOG_PATH = "logs/arm-image-build.log"

# Handlers installed here carry this name so a second call replaces them
# instead of stacking duplicates next to handlers other code installed.
HANDLER_NAME = "arm-image-builder"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def _own_handlers(root: logging.Logger) -> List[logging.Handler]:
    return [h for h in root.handlers if h.get_name() == HANDLER_NAME]


def _open_log_file(log_path: str) -> logging.FileHandler:
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path)
    except OSError:
        fallback = str(Path.cwd() / os.path.basename(log_path))
        if fallback == os.path.abspath(log_path):
            raise
        return logging.FileHandler(fallback)


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send build logs to a file and, optionally, the console.

    The file always records DEBUG, so the output of every system command the
    build runs ends up in it. `level` only applies to the console. An
    unwritable log_path falls back to a file of the same name in the working
    directory. Returns the path actually written to.
    """

    root = logging.getLogger()
    for h in _own_handlers(root):
        root.removeHandler(h)
        h.close()
    root.setLevel(logging.DEBUG)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    file_handler = _open_log_file(log_path)
    file_handler.set_name(HANDLER_NAME)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.set_name(HANDLER_NAME)
        console.setLevel(level)
        console.setFormatter(fmt)
        root.addHandler(console)

    chosen_path = file_handler.baseFilename
    logging.getLogger(__name__).info("Logging to %s", chosen_path)
    return chosen_path


def set_console_level(level: int) -> None:
    """Change the console verbosity after logging is configured."""

    for h in _own_handlers(logging.getLogger()):
        if not isinstance(h, logging.FileHandler):
            h.setLevel(level)
