from __future__ import annotations

import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import unquote, urlparse

import requests

from ..errors import ChecksumError, StepError
from .cancel import CancelToken

logger = logging.getLogger(__name__)

CHECKSUM_TYPES = ("md5", "sha1", "sha256", "sha512", "none")
CHUNK_SIZE = 1024 * 1024
REQUEST_TIMEOUT_S = 30


class Cache:
    """Directory holding downloaded base images between builds."""

    def __init__(self, path: str):
        self.path = Path(path)

    def path_for(self, key: str, suffix: str = "") -> str:
        self.path.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return str(self.path / f"{digest}{suffix}")


def file_checksum(path: str, checksum_type: str) -> str:
    h = hashlib.new(checksum_type)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(path: str, checksum: str, checksum_type: str) -> None:
    if checksum_type == "none":
        return
    actual = file_checksum(path, checksum_type)
    if actual.lower() != checksum.lower():
        raise ChecksumError(f"{checksum_type} checksum mismatch for {path}: expected {checksum}, got {actual}")


def local_path(url: str) -> Optional[str]:
    """Return the filesystem path for local sources, None for remote URLs."""

    parsed = urlparse(url)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme == "":
        return url
    return None


def _suffix(url: str) -> str:
    name = os.path.basename(urlparse(url).path)
    _, ext = os.path.splitext(name)
    return ext


def _fetch(url: str, dest: str, cancel: Optional[CancelToken]) -> None:
    tmp = dest + ".part"
    try:
        with requests.get(url, stream=True, timeout=REQUEST_TIMEOUT_S) as response:
            response.raise_for_status()
            with open(tmp, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel is not None and cancel.cancelled:
                        break
                    f.write(chunk)
    except requests.RequestException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
    if cancel is not None and cancel.cancelled:
        os.remove(tmp)
        cancel.raise_if_cancelled()
    os.replace(tmp, dest)
    logger.info("Downloaded %s to %s", url, dest)


def download(
    urls: Sequence[str],
    checksum: str,
    checksum_type: str,
    cache: Cache,
    *,
    cancel: Optional[CancelToken] = None,
) -> str:
    """Fetch the first reachable URL and verify it; returns the local path.

    Local paths and file:// URLs are verified in place. Remote files land in the
    cache and are reused when the cached copy already matches the checksum.
    """

    errors = []
    for url in urls:
        if cancel is not None:
            cancel.raise_if_cancelled()

        path = local_path(url)
        if path is not None:
            if not os.path.isfile(path):
                errors.append(f"{url}: no such file")
                continue
            verify_checksum(path, checksum, checksum_type)
            return path

        dest = cache.path_for(url, _suffix(url))
        if os.path.isfile(dest):
            try:
                verify_checksum(dest, checksum, checksum_type)
                logger.info("Using cached %s", dest)
                return dest
            except ChecksumError:
                logger.info("Cached %s does not match, downloading again", dest)
                os.remove(dest)

        try:
            _fetch(url, dest, cancel)
        except requests.RequestException as e:
            logger.warning("Download of %s failed: %s", url, e)
            errors.append(f"{url}: {e}")
            continue
        verify_checksum(dest, checksum, checksum_type)
        return dest

    raise StepError("Unable to download image: " + "; ".join(errors or ["no URLs given"]))


def copy_file(src: str, dst: str) -> str:
    Path(dst).parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    return dst
