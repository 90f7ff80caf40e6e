from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple


class ImageType(str, enum.Enum):
    RASPBERRY_PI = "raspberrypi"
    BEAGLEBONE = "beaglebone"


@dataclass(frozen=True)
class ImageProfile:
    image_type: ImageType
    mounts: Tuple[str, ...]  # mount point of partition 1, 2, ...
    qemu_args: Tuple[str, ...] = ()


def image_profiles() -> Dict[ImageType, ImageProfile]:
    return {
        ImageType.RASPBERRY_PI: ImageProfile(ImageType.RASPBERRY_PI, mounts=("/boot", "/")),
        ImageType.BEAGLEBONE: ImageProfile(
            ImageType.BEAGLEBONE, mounts=("/",), qemu_args=("-cpu", "cortex-a8")
        ),
    }


# Order matters: the first marker found in the URL wins.
_URL_MARKERS: Tuple[Tuple[str, ImageType], ...] = (
    ("raspbian", ImageType.RASPBERRY_PI),
    ("bone", ImageType.BEAGLEBONE),
)


def auto_detect_type(urls: Sequence[str]) -> Optional[ImageType]:
    """Guess the image type from the first base-image URL by substring match."""

    if not urls:
        return None
    url = urls[0]
    for marker, image_type in _URL_MARKERS:
        if marker in url:
            return image_type
    return None


def parse_image_type(value: str) -> Optional[ImageType]:
    try:
        return ImageType(value)
    except ValueError:
        return None
