from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .errors import BuildCanceled, ProvisionError
from .lib.chroot import ChrootCommunicator
from .ui import Ui

logger = logging.getLogger(__name__)

SCRIPT_UPLOAD_DIR = "/tmp"


class Hook(Protocol):
    """Provisioning engine invoked once inside the ready chroot."""

    def run(self, ui: Ui, communicator: ChrootCommunicator) -> None:
        ...

    def cancel(self) -> None:
        ...


class NoopHook:
    def run(self, ui: Ui, communicator: ChrootCommunicator) -> None:
        ui.say("No provisioners configured")

    def cancel(self) -> None:
        pass


class ChrootShellHook:
    """Runs `shell` provisioners: inline commands and uploaded scripts."""

    def __init__(self, provisioners: Sequence[Dict[str, Any]]):
        self.provisioners = list(provisioners)
        self._lock = threading.Lock()
        self._communicator: Optional[ChrootCommunicator] = None
        self._cancelled = False

    def _commands(self, communicator: ChrootCommunicator, prov: Dict[str, Any]) -> List[str]:
        kind = prov.get("type", "shell")
        if kind != "shell":
            raise ProvisionError(f"unsupported provisioner type: {kind}")

        commands = [str(c) for c in (prov.get("inline") or [])]
        scripts = list(prov.get("scripts") or [])
        if prov.get("script"):
            scripts.insert(0, prov["script"])
        for script in scripts:
            dst = f"{SCRIPT_UPLOAD_DIR}/{os.path.basename(script)}"
            communicator.upload(dst, script)
            commands.append(f"chmod 0755 {dst} && {dst}; rc=$?; rm -f {dst}; exit $rc")
        return commands

    def run(self, ui: Ui, communicator: ChrootCommunicator) -> None:
        with self._lock:
            if self._cancelled:
                raise BuildCanceled("provisioning was cancelled")
            self._communicator = communicator

        try:
            for n, prov in enumerate(self.provisioners, start=1):
                ui.say(f"Provisioning with {prov.get('type', 'shell')} ({n}/{len(self.provisioners)})")
                for command in self._commands(communicator, prov):
                    ui.message(command)
                    result = communicator.start(command)
                    if self._cancelled:
                        raise BuildCanceled("provisioning was cancelled")
                    if result.returncode != 0:
                        raise ProvisionError(
                            f"provisioning command exited with {result.returncode}: {command}\n{result.stderr}".rstrip()
                        )
        finally:
            with self._lock:
                self._communicator = None

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._communicator is not None:
                self._communicator.cancel()
