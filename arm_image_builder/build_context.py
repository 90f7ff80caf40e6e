from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .lib.loop import PartitionDevice


@dataclass
class BuildContext:
    """State shared between steps of one run.

    Each field is written by exactly one step; later steps only read it.
    """

    iso_path: Optional[str] = None  # download
    image_file: Optional[str] = None  # copy image
    partitions: List[PartitionDevice] = field(default_factory=list)  # map image
    mount_path: Optional[str] = None  # mount image
    qemu_in_chroot: Optional[str] = None  # install qemu
    qemu_env: Dict[str, str] = field(default_factory=dict)  # install qemu

    # Terminal flags, written by the runner.
    error: Optional[BaseException] = None
    halted: bool = False
    cancelled: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None or self.halted or self.cancelled
