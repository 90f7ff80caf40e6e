from __future__ import annotations

import hashlib
import json
import os
import stat
import tempfile
from typing import Dict, List, Optional

import pytest

from arm_image_builder.errors import CommandError
from arm_image_builder.lib import filesystem, loop, mounts, partition
from arm_image_builder.lib.command import CmdResult


class FakeHost:
    """Stands in for the system tools the builder shells out to."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: Dict[str, Optional[str]] = {}
        self.loop_device = "/dev/loop7"
        self.partitions = ["/dev/loop7p1", "/dev/loop7p2"]
        self.fs_types: Dict[str, str] = {"/dev/loop7p1": "vfat", "/dev/loop7p2": "ext4"}
        self.label = "dos"
        self.fail: Dict[str, int] = {}  # argv prefix -> returncode

    def _respond(self, argv: List[str]) -> CmdResult:
        joined = " ".join(argv)
        for prefix, rc in self.fail.items():
            if joined.startswith(prefix):
                return CmdResult(argv=argv, returncode=rc, stdout="", stderr=f"{argv[0]}: failed")

        out = ""
        if argv[:2] == ["losetup", "--find"]:
            out = self.loop_device + "\n"
        elif argv[0] == "lsblk":
            lines = [f"{self.loop_device} loop"] + [f"{p} part" for p in self.partitions]
            out = "\n".join(lines) + "\n"
        elif argv[:2] == ["sfdisk", "--json"]:
            image = argv[2]
            out = json.dumps(
                {
                    "partitiontable": {
                        "label": self.label,
                        "device": image,
                        "unit": "sectors",
                        "sectorsize": 512,
                        "partitions": [
                            {"node": f"{image}1", "start": 8192, "size": 524288, "type": "c"},
                            {"node": f"{image}2", "start": 532480, "size": 3604480, "type": "83"},
                        ],
                    }
                }
            )
        elif argv[0] == "blkid":
            out = self.fs_types.get(argv[-1], "") + "\n"
        elif argv[:3] == ["mount", "-t", "binfmt_misc"]:
            # The kernel interface exposes a register file once mounted.
            open(os.path.join(argv[-1], "register"), "w").close()
        return CmdResult(argv=argv, returncode=0, stdout=out, stderr="")

    def run_cmd(self, argv, *, check=True, env=None, cwd=None, input_text=None, cancel=None):
        argv = list(argv)
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.calls.append(argv)
        self.inputs[" ".join(argv)] = input_text
        result = self._respond(argv)
        if check and result.returncode != 0:
            raise CommandError(argv, result.returncode, result.stderr)
        return result

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == name]

    def umount_targets(self) -> List[str]:
        return [c[-1] for c in self.calls if c[0] == "umount"]

    def mount_targets(self) -> List[str]:
        return [c[-1] for c in self.calls if c[0] == "mount"]


@pytest.fixture
def fake_host(monkeypatch):
    host = FakeHost()
    for module in (loop, partition, filesystem, mounts):
        monkeypatch.setattr(module, "run_cmd", host.run_cmd)
    monkeypatch.setattr(loop.time, "sleep", lambda _s: None)
    return host


@pytest.fixture
def chroot_tmp(tmp_path, monkeypatch):
    """Make tempfile.mkdtemp create chroot roots inside tmp_path."""

    base = tmp_path / "chroots"
    base.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(base))
    return base


@pytest.fixture
def qemu_binary(tmp_path):
    path = tmp_path / "bin" / "qemu-arm-static"
    path.parent.mkdir()
    path.write_bytes(b"\x7fELF fake emulator")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def base_image(tmp_path):
    path = tmp_path / "2020-raspbian-lite.img"
    path.write_bytes(b"\0" * 4096)
    digest = hashlib.sha256(path.read_bytes()).hexdigest()
    return str(path), digest


@pytest.fixture
def raw_config(tmp_path, qemu_binary, base_image):
    image, digest = base_image
    return {
        "build_name": "test",
        "iso_url": image,
        "iso_checksum": digest,
        "iso_checksum_type": "sha256",
        "output_directory": str(tmp_path / "out"),
        "cache_dir": str(tmp_path / "cache"),
        "qemu_binary": qemu_binary,
    }
