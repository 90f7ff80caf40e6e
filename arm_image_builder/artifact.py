from __future__ import annotations

import logging
import os
from typing import List

logger = logging.getLogger(__name__)

BUILDER_ID = "arm-image-builder.arm-image"


class Artifact:
    """The built disk image. Its identity is the image path."""

    builder_id = BUILDER_ID

    def __init__(self, image: str):
        self.image = image

    def id(self) -> str:
        return self.image

    def files(self) -> List[str]:
        return [self.image]

    def destroy(self) -> None:
        logger.info("Removing artifact %s", self.image)
        os.remove(self.image)

    def __str__(self) -> str:
        return self.image

    def __repr__(self) -> str:
        return f"Artifact({self.image!r})"
