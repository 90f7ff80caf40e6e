from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import threading
from typing import Callable, Dict, Mapping, Optional

from jinja2 import Environment, StrictUndefined

from ..errors import BuildCanceled
from .command import CmdResult

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_WRAPPER = "{{ command }}"

CommandWrapper = Callable[[str], str]

_jinja_env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)


def command_wrapper(template: str, variables: Mapping[str, object] | None = None) -> CommandWrapper:
    """Compile a wrapper template; the returned callable renders it per command."""

    tmpl = _jinja_env.from_string(template or DEFAULT_COMMAND_WRAPPER)
    extra = dict(variables or {})

    def wrap(command: str) -> str:
        return tmpl.render(extra, command=command)

    return wrap


class ChrootCommunicator:
    """Runs commands inside a mounted chroot root.

    Each command becomes `chroot <root> /bin/sh -c <command>`, is passed
    through the command wrapper and executed with the host's /bin/sh. The
    emulator variables are prefixed with env(1) inside the wrapped text so
    they survive wrappers like sudo or ssh that reset the environment.
    """

    def __init__(
        self,
        root: str,
        wrapper: CommandWrapper,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.root = root
        self.wrapper = wrapper
        self.env: Dict[str, str] = dict(env or {})
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._cancelled = False

    def wrapped(self, command: str) -> str:
        inner = f"chroot {shlex.quote(self.root)} /bin/sh -c {shlex.quote(command)}"
        if self.env:
            assignments = " ".join(shlex.quote(f"{k}={v}") for k, v in sorted(self.env.items()))
            inner = f"env {assignments} {inner}"
        return self.wrapper(inner)

    def start(self, command: str) -> CmdResult:
        wrapped = self.wrapped(command)
        logger.info("CHROOT %s", wrapped)

        with self._lock:
            if self._cancelled:
                raise BuildCanceled("provisioning was cancelled")
            self._proc = subprocess.Popen(
                ["/bin/sh", "-c", wrapped],
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
            proc = self._proc

        stdout, stderr = proc.communicate()
        with self._lock:
            self._proc = None

        if stdout:
            logger.info("OUT %s", stdout.strip())
        if stderr:
            logger.info("ERR %s", stderr.strip())
        return CmdResult(argv=["/bin/sh", "-c", wrapped], returncode=proc.returncode, stdout=stdout, stderr=stderr)

    def upload(self, dst: str, src: str) -> str:
        """Copy a host file into the chroot; dst is a path inside the chroot."""

        target = os.path.join(self.root, dst.lstrip("/"))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        shutil.copy2(src, target)
        logger.debug("Uploaded %s -> %s", src, target)
        return dst

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._proc is not None and self._proc.poll() is None:
                logger.info("Terminating running chroot command")
                self._proc.terminate()
