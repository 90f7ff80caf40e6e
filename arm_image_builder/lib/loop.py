from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..errors import StepError
from .cancel import CancelToken
from .command import run_cmd

logger = logging.getLogger(__name__)

PARTITION_POLL_ATTEMPTS = 5
PARTITION_POLL_INTERVAL_S = 1.0

_TRAILING_NUMBER = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class PartitionDevice:
    index: int  # 1-based, partition table order
    path: str


def attach_image(image: str, *, cancel: Optional[CancelToken] = None) -> str:
    """Attach an image file to a free loop device with partition scanning."""

    if not Path(image).is_file():
        raise StepError(f"Image file not found: {image}")

    r = run_cmd(["losetup", "--find", "--show", "--partscan", image], cancel=cancel)
    loop_dev = (r.stdout or "").strip()
    if not loop_dev:
        raise StepError(f"losetup did not report a loop device for {image}")
    logger.info("Attached %s to %s", image, loop_dev)
    return loop_dev


def _partition_number(name: str) -> int:
    m = _TRAILING_NUMBER.search(name)
    if not m:
        raise StepError(f"Unable to determine partition number of {name}")
    return int(m.group(1))


def list_partitions(loop_dev: str, *, cancel: Optional[CancelToken] = None) -> List[PartitionDevice]:
    """Return the partition devices of an attached loop device, ordered by number.

    The kernel creates partition nodes asynchronously after attach, so an empty
    listing is retried a few times before giving up.
    """

    for attempt in range(PARTITION_POLL_ATTEMPTS):
        r = run_cmd(
            ["lsblk", "--list", "--noheadings", "--paths", "--output", "NAME,TYPE", loop_dev],
            cancel=cancel,
        )
        names = []
        for line in (r.stdout or "").splitlines():
            fields = line.split()
            if len(fields) == 2 and fields[1] == "part":
                names.append(fields[0])
        if names:
            names.sort(key=_partition_number)
            return [PartitionDevice(index=i + 1, path=n) for i, n in enumerate(names)]
        if attempt + 1 < PARTITION_POLL_ATTEMPTS:
            logger.debug("No partitions visible on %s yet, retrying", loop_dev)
            time.sleep(PARTITION_POLL_INTERVAL_S)

    raise StepError(f"No partitions found on {loop_dev}; unsupported or unreadable partition table")


def detach_loop(loop_dev: str) -> bool:
    """Detach a loop device. Returns False (and logs) on failure."""

    r = run_cmd(["losetup", "--detach", loop_dev], check=False)
    if r.returncode != 0:
        logger.warning("Failed to detach %s: %s", loop_dev, (r.stderr or "").strip())
        return False
    logger.info("Detached %s", loop_dev)
    return True
