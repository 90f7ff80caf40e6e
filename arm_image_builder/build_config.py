from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jinja2 import Environment, TemplateError

from .errors import ConfigError
from .lib.chroot import DEFAULT_COMMAND_WRAPPER
from .lib.download import CHECKSUM_TYPES
from .lib.emulation import qemu_env
from .lib.mounts import DEFAULT_CHROOT_MOUNTS
from .profiles import ImageType, auto_detect_type, image_profiles, parse_image_type

logger = logging.getLogger(__name__)

DEFAULT_QEMU_BINARY = "qemu-arm-static"
DEFAULT_CACHE_DIR = "cache"

# Rendered per command at run time, not at load time.
_DEFERRED_KEYS = {"command_wrapper"}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)(?:i?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "K": 1 << 10, "M": 1 << 20, "G": 1 << 30, "T": 1 << 40}


@dataclass(frozen=True)
class BuildConfig:
    build_name: str
    iso_urls: List[str]
    iso_checksum: str
    iso_checksum_type: str
    output_directory: str
    image_type: Optional[ImageType]
    image_mounts: List[str]
    chroot_mounts: List[Tuple[str, str, str]]
    last_partition_extra_size: int
    qemu_binary: str
    qemu_args: List[str]
    command_wrapper: str = DEFAULT_COMMAND_WRAPPER
    provisioners: List[Dict[str, Any]] = field(default_factory=list)
    cache_dir: str = DEFAULT_CACHE_DIR
    debug: bool = False


def load_build_config(path: str) -> Dict[str, Any]:
    """Read a YAML build file and return its raw mapping."""

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")
    return raw


def parse_size(value: Any) -> int:
    """Parse a byte count: an integer, or a string like '512M' or '1.5GiB'."""

    if isinstance(value, bool):
        raise ValueError(f"invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"size must not be negative: {value}")
        return value
    if value is None or value == "":
        return 0
    m = _SIZE_RE.match(str(value))
    if not m:
        raise ValueError(f"invalid size: {value!r}")
    return int(float(m.group(1)) * _SIZE_UNITS[m.group(2).upper()])


def split_checksum(checksum: str, checksum_type: str) -> Tuple[str, str]:
    """Accept both (value, type) and the 'type:value' shorthand."""

    if ":" in checksum and not checksum_type:
        kind, _, value = checksum.partition(":")
        return value.strip(), kind.strip().lower()
    return checksum.strip(), (checksum_type or "").strip().lower()


def _render(item: Any, jinja_env: Environment, context: Dict[str, Any]) -> Any:
    if isinstance(item, str):
        return jinja_env.from_string(item).render(context)
    if isinstance(item, list):
        return [_render(i, jinja_env, context) for i in item]
    if isinstance(item, dict):
        return {k: (v if k in _DEFERRED_KEYS else _render(v, jinja_env, context)) for k, v in item.items()}
    return item


def interpolate(raw: Dict[str, Any], build_name: str) -> Dict[str, Any]:
    context = {"build_name": build_name, "env": dict(os.environ)}
    return _render(raw, Environment(), context)


def _string_list(value: Any, name: str, errors: List[str]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    errors.append(f"{name} must be a list of strings")
    return []


def prepare_config(raw: Dict[str, Any], build_name: Optional[str] = None) -> Tuple[BuildConfig, List[str]]:
    """Validate a raw build mapping, apply defaults and resolve the emulator.

    Returns (config, warnings). Every problem found is reported together in a
    single ConfigError.
    """

    errors: List[str] = []
    warnings: List[str] = []

    name = str(build_name or raw.get("build_name") or "arm-image")
    try:
        raw = interpolate(raw, name)
    except TemplateError as e:
        raise ConfigError([f"template error: {e}"]) from e

    # Base image source.
    urls = _string_list(raw.get("iso_urls"), "iso_urls", errors)
    if raw.get("iso_url"):
        if urls:
            errors.append("only one of iso_url or iso_urls may be specified")
        else:
            urls = [str(raw["iso_url"])]
    if not urls:
        errors.append("one of iso_url or iso_urls must be specified")

    checksum, checksum_type = split_checksum(
        str(raw.get("iso_checksum") or ""), str(raw.get("iso_checksum_type") or "")
    )
    if not checksum_type:
        errors.append("the iso_checksum_type must be specified")
    elif checksum_type not in CHECKSUM_TYPES:
        errors.append(f"unsupported checksum type: {checksum_type} (must be one of: {', '.join(CHECKSUM_TYPES)})")
    elif checksum_type == "none":
        warnings.append(
            "A checksum type of 'none' was specified. Since the base image is downloaded, "
            "this is not recommended."
        )
    elif not checksum:
        errors.append("due to large file sizes, an iso_checksum is required")

    output_directory = str(raw.get("output_directory") or f"output-{name}")

    chroot_mounts: List[Tuple[str, str, str]] = []
    for entry in raw.get("chroot_mounts") or []:
        if isinstance(entry, (list, tuple)) and len(entry) == 3 and all(isinstance(x, str) for x in entry):
            chroot_mounts.append((entry[0], entry[1], entry[2]))
        else:
            errors.append(f"chroot_mounts entries must be [type, device, mountpoint] triplets, got: {entry!r}")
    if not chroot_mounts and not raw.get("chroot_mounts"):
        chroot_mounts = list(DEFAULT_CHROOT_MOUNTS)

    command_wrapper = str(raw.get("command_wrapper") or DEFAULT_COMMAND_WRAPPER)

    image_mounts = _string_list(raw.get("image_mounts"), "image_mounts", errors)
    qemu_args = _string_list(raw.get("qemu_args"), "qemu_args", errors)

    profiles = image_profiles()
    image_type: Optional[ImageType] = None
    type_value = str(raw.get("image_type") or "")
    if not type_value:
        image_type = auto_detect_type(urls)
        if image_type is not None:
            logger.info("Detected image type %s from %s", image_type.value, urls[0])
    else:
        image_type = parse_image_type(type_value)
        if image_type is None:
            valid = ", ".join(t.value for t in profiles)
            errors.append(f"unknown image_type. must be one of: {valid}")

    if image_type is not None:
        profile = profiles[image_type]
        if not image_mounts:
            image_mounts = list(profile.mounts)
        if not qemu_args:
            qemu_args = list(profile.qemu_args)

    try:
        qemu_env(qemu_args)
    except ValueError as e:
        errors.append(f"qemu_args: {e}")

    if not any(image_mounts):
        errors.append("no image mounts provided. Please set the image mounts or image type.")

    try:
        extra_size = parse_size(raw.get("last_partition_extra_size"))
    except ValueError as e:
        errors.append(f"last_partition_extra_size: {e}")
        extra_size = 0

    qemu_binary = str(raw.get("qemu_binary") or DEFAULT_QEMU_BINARY)
    resolved = shutil.which(qemu_binary)
    if resolved is None:
        errors.append("qemu binary not found.")
    else:
        if "qemu-" not in resolved:
            warnings.append("binary doesn't look like qemu-user")
        qemu_binary = os.path.abspath(resolved)

    provisioners = raw.get("provisioners") or []
    if not isinstance(provisioners, list) or not all(isinstance(p, dict) for p in provisioners):
        errors.append("provisioners must be a list of mappings")
        provisioners = []

    if errors:
        raise ConfigError(errors)

    cfg = BuildConfig(
        build_name=name,
        iso_urls=urls,
        iso_checksum=checksum,
        iso_checksum_type=checksum_type,
        output_directory=output_directory,
        image_type=image_type,
        image_mounts=image_mounts,
        chroot_mounts=chroot_mounts,
        last_partition_extra_size=extra_size,
        qemu_binary=qemu_binary,
        qemu_args=qemu_args,
        command_wrapper=command_wrapper,
        provisioners=list(provisioners),
        cache_dir=str(raw.get("cache_dir") or DEFAULT_CACHE_DIR),
        debug=bool(raw.get("debug", False)),
    )
    return cfg, warnings
