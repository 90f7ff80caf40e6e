from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import StepError

logger = logging.getLogger(__name__)

BINFMT_REGISTER = "register"
CHROOT_INTERPRETER_DIR = "/usr/bin"
BACKUP_SUFFIX = ".arm-image-builder.bak"


@dataclass(frozen=True)
class BinfmtMagic:
    magic: str
    mask: str


# ELF header signatures for 32-bit ARM (e_machine 0x28) and AArch64 (0xb7),
# written in the escaped form binfmt_misc expects.
ARM = BinfmtMagic(
    magic=r"\x7fELF\x01\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x28\x00",
    mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
)
AARCH64 = BinfmtMagic(
    magic=r"\x7fELF\x02\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\xb7\x00",
    mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
)


def magic_for(interpreter: str) -> BinfmtMagic:
    name = os.path.basename(interpreter)
    if "aarch64" in name or "arm64" in name:
        return AARCH64
    return ARM


@dataclass
class InstalledInterpreter:
    in_chroot: str  # path as seen from inside the chroot
    host_path: str
    backup: Optional[str] = None  # image's own copy, moved aside while ours is installed


def install_interpreter(host_binary: str, chroot_root: str) -> InstalledInterpreter:
    """Copy a static emulator into the chroot.

    A file the image already ships at the same path is renamed to
    <path>.arm-image-builder.bak and put back by remove_interpreter.
    """

    if not os.path.isfile(host_binary):
        raise StepError(f"Emulator binary not found: {host_binary}")

    in_chroot = f"{CHROOT_INTERPRETER_DIR}/{os.path.basename(host_binary)}"
    dst = os.path.join(chroot_root, in_chroot.lstrip("/"))
    os.makedirs(os.path.dirname(dst), exist_ok=True)

    backup = None
    if os.path.lexists(dst):
        backup = dst + BACKUP_SUFFIX
        os.replace(dst, backup)
        logger.info("Moved the image's %s aside to %s", in_chroot, backup)

    try:
        shutil.copy2(host_binary, dst)
        os.chmod(dst, 0o755)
    except OSError:
        if backup is not None:
            os.replace(backup, dst)
        raise
    logger.info("Installed %s as %s in chroot", host_binary, in_chroot)
    return InstalledInterpreter(in_chroot=in_chroot, host_path=dst, backup=backup)


def remove_interpreter(installed: InstalledInterpreter) -> None:
    """Remove the installed emulator and restore whatever the image had there."""

    try:
        os.remove(installed.host_path)
        logger.info("Removed %s", installed.host_path)
    except FileNotFoundError:
        pass
    if installed.backup is not None:
        os.replace(installed.backup, installed.host_path)
        logger.info("Restored %s", installed.host_path)


# qemu-user options and the environment variables it reads them from.
# True marks options that take a value.
QEMU_USER_OPTIONS: Dict[str, Tuple[str, bool]] = {
    "L": ("QEMU_LD_PREFIX", True),
    "s": ("QEMU_STACK_SIZE", True),
    "cpu": ("QEMU_CPU", True),
    "E": ("QEMU_SET_ENV", True),
    "U": ("QEMU_UNSET_ENV", True),
    "0": ("QEMU_ARGV0", True),
    "r": ("QEMU_UNAME", True),
    "B": ("QEMU_GUEST_BASE", True),
    "R": ("QEMU_RESERVED_VA", True),
    "d": ("QEMU_LOG", True),
    "D": ("QEMU_LOG_FILENAME", True),
    "dfilter": ("QEMU_DFILTER", True),
    "p": ("QEMU_PAGESIZE", True),
    "g": ("QEMU_GDB", True),
    "seed": ("QEMU_RAND_SEED", True),
    "plugin": ("QEMU_PLUGIN", True),
    "singlestep": ("QEMU_SINGLESTEP", False),
    "one-insn-per-tb": ("QEMU_ONE_INSN_PER_TB", False),
    "strace": ("QEMU_STRACE", False),
    "perfmap": ("QEMU_PERFMAP", False),
    "jitdump": ("QEMU_JITDUMP", False),
}


def qemu_env(args: Sequence[str]) -> Dict[str, str]:
    """Translate qemu-user command line options into QEMU_* environment variables.

    binfmt_misc cannot pass arguments to an interpreter, but qemu-user reads
    its options from the environment as well (-cpu X is QEMU_CPU=X, -L X is
    QEMU_LD_PREFIX=X). Raises ValueError for options it has no variable for.
    """

    env: Dict[str, str] = {}
    items: List[str] = list(args)
    i = 0
    while i < len(items):
        opt = items[i]
        if not opt.startswith("-"):
            raise ValueError(f"unexpected qemu argument: {opt}")
        known = QEMU_USER_OPTIONS.get(opt.lstrip("-"))
        if known is None:
            raise ValueError(f"unsupported qemu option: {opt}")
        name, takes_value = known
        if not takes_value:
            env[name] = "1"
            i += 1
            continue
        if i + 1 >= len(items):
            raise ValueError(f"qemu option {opt} needs a value")
        env[name] = items[i + 1]
        i += 2
    return env


def registration_line(name: str, interpreter: str) -> str:
    m = magic_for(interpreter)
    return f":{name}:M::{m.magic}:{m.mask}:{interpreter}:"


def register_binfmt(binfmt_dir: str, name: str, interpreter: str) -> str:
    """Register interpreter for foreign ELF binaries; returns the entry file path."""

    register = os.path.join(binfmt_dir, BINFMT_REGISTER)
    if not os.path.exists(register):
        raise StepError(f"binfmt_misc is not mounted at {binfmt_dir}")

    line = registration_line(name, interpreter)
    logger.info("Registering binfmt entry %s -> %s", name, interpreter)
    with open(register, "w", encoding="ascii") as f:
        f.write(line)
    return os.path.join(binfmt_dir, name)


def unregister_binfmt(entry_path: str) -> bool:
    """Remove a binfmt entry. An entry that is already gone counts as removed."""

    if not os.path.exists(entry_path):
        logger.info("binfmt entry %s already removed", entry_path)
        return True
    try:
        with open(entry_path, "w", encoding="ascii") as f:
            f.write("-1")
    except OSError as e:
        logger.warning("Failed to remove binfmt entry %s: %s", entry_path, e)
        return False
    logger.info("Removed binfmt entry %s", entry_path)
    return True
