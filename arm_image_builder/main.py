from __future__ import annotations

import argparse
import logging
import signal
from typing import Optional

from .builder import Builder
from .build_config import load_build_config
from .errors import ArmImageError, ConfigError
from .hooks import ChrootShellHook, NoopHook
from .lib.download import Cache
from .logging_utils import DEFAULT_LOG_PATH, configure_logging, set_console_level
from .ui import LoggingUi

logger = logging.getLogger(__name__)


DEFAULT_BUILD_CONFIG = "build.yaml"


def run(
    *,
    config_path: str,
    log_path: str = DEFAULT_LOG_PATH,
    build_name: Optional[str] = None,
    debug: bool = False,
) -> int:
    configure_logging(log_path=log_path, level=logging.DEBUG if debug else logging.INFO)

    raw = load_build_config(config_path)
    builder = Builder()
    try:
        builder.prepare(raw, build_name)
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    cfg = builder.config
    assert cfg is not None
    if cfg.debug:
        set_console_level(logging.DEBUG)
    hook = ChrootShellHook(cfg.provisioners) if cfg.provisioners else NoopHook()
    ui = LoggingUi()

    def _on_signal(signum, _frame):
        logger.warning("Received signal %d, cancelling", signum)
        builder.cancel()

    previous = {s: signal.signal(s, _on_signal) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        artifact = builder.run(ui, hook, Cache(cfg.cache_dir))
    except (ArmImageError, OSError) as e:
        logger.error("Build failed: %s", e)
        return 1
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)

    ui.say(f"Build finished. Image: {artifact}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="arm-image-build")
    p.add_argument("--config", default=DEFAULT_BUILD_CONFIG, help="Path to the YAML build file")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to the build log")
    p.add_argument("--name", default=None, help="Build name (defaults to build_name in the config)")
    p.add_argument("--debug", action="store_true", help="Log command output")

    args = p.parse_args(argv)

    return run(
        config_path=args.config,
        log_path=args.log,
        build_name=args.name,
        debug=bool(args.debug),
    )


if __name__ == "__main__":
    raise SystemExit(main())
