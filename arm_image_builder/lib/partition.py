from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import StepError
from .cancel import CancelToken
from .command import run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionEntry:
    node: str
    number: int
    start: int  # sectors
    size: int  # sectors
    type: str


@dataclass(frozen=True)
class PartitionTable:
    label: str
    sector_size: int
    partitions: List[PartitionEntry]


def _entry_number(node: str) -> int:
    m = re.search(r"(\d+)$", node)
    if not m:
        raise StepError(f"Unexpected partition node name in sfdisk output: {node}")
    return int(m.group(1))


def read_partition_table(image: str, *, cancel: Optional[CancelToken] = None) -> PartitionTable:
    r = run_cmd(["sfdisk", "--json", image], cancel=cancel)
    try:
        raw: Dict[str, Any] = json.loads(r.stdout or "")["partitiontable"]
    except (ValueError, KeyError) as e:
        raise StepError(f"Unable to read partition table of {image}") from e

    entries = [
        PartitionEntry(
            node=str(p["node"]),
            number=_entry_number(str(p["node"])),
            start=int(p["start"]),
            size=int(p["size"]),
            type=str(p.get("type", "")),
        )
        for p in (raw.get("partitions") or [])
    ]
    return PartitionTable(
        label=str(raw.get("label", "")),
        sector_size=int(raw.get("sectorsize", 512)),
        partitions=entries,
    )


def grow_last_partition(image: str, extra_bytes: int, *, cancel: Optional[CancelToken] = None) -> PartitionEntry:
    """Append extra_bytes to the image file and extend its last DOS partition to fill it.

    Only the last entry of a DOS (MBR) table is supported.
    """

    table = read_partition_table(image, cancel=cancel)
    if table.label != "dos":
        raise StepError(
            f"Cannot resize last partition of {image}: partition table is "
            f"'{table.label or 'unknown'}', only 'dos' is supported"
        )
    if not table.partitions:
        raise StepError(f"Cannot resize last partition of {image}: no partitions")

    last = max(table.partitions, key=lambda p: p.start)
    if last.type.lower() in {"5", "f", "85"}:
        raise StepError(f"Last partition {last.node} is an extended partition container")

    size = os.path.getsize(image)
    with open(image, "r+b") as f:
        f.truncate(size + extra_bytes)
    logger.info("Grew %s from %d to %d bytes", image, size, size + extra_bytes)

    # ", +" keeps the start and takes all following free space.
    run_cmd(
        ["sfdisk", "--no-reread", "--no-tell-kernel", "-N", str(last.number), image],
        input_text=", +\n",
        cancel=cancel,
    )
    return last
