"""Geometric image transforms.

Every resizer takes a Pillow image plus the requested target width and
height. A non-positive dimension means "unspecified", in which case it is
derived from the source aspect ratio where the transform allows it.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Protocol

from PIL import Image, ImageOps  # type: ignore[import]

from image_server.exceptions import ImageTransformException
from image_server.image_service.models import ResizeType

log = logging.getLogger(__name__)


class Resizer(Protocol):
    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        ...


def _ratio(image: Image.Image) -> float:
    return image.width / image.height


class PlainResizer:
    """Forces the given bounds, deriving a missing side from the source ratio."""

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        if width <= 0 and height <= 0:
            raise ImageTransformException("Either width or height must be greater zero to keep the existing ratio")

        if width <= 0:
            width = max(1, int(height * _ratio(image) + 0.5))
        if height <= 0:
            height = max(1, int(width / _ratio(image) + 0.5))

        return image.resize((width, height), Image.LANCZOS)


class FitResizer:
    """Fits the image into the bounding box while keeping the source ratio."""

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        if width <= 0 or height <= 0:
            raise ImageTransformException("Please specify both width and height for your target image")

        original_ratio = _ratio(image)
        target_ratio = width / height

        if target_ratio < original_ratio:
            height = int(width / original_ratio)
        else:
            width = int(height * original_ratio)

        return image.resize((max(1, width), max(1, height)), Image.LANCZOS)


def crop_bounds(image: Image.Image, width: int, height: int):
    """Resolves the exact output bounds of a crop."""
    if width <= 0 and height <= 0:
        raise ImageTransformException("Either width or height must be greater zero to keep the existing ratio")

    if width <= 0:
        width = int(height * _ratio(image))
    if height <= 0:
        height = int(width / _ratio(image))

    return max(1, width), max(1, height)


def thumbnail(image: Image.Image, width: int, height: int) -> Image.Image:
    # scale to cover the box, then cut the centered excess
    return ImageOps.fit(image, (width, height), Image.LANCZOS, centering=(0.5, 0.5))


class CropResizer:
    """Scales the image down and crops it to exactly the given bounds."""

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        width, height = crop_bounds(image, width, height)
        return thumbnail(image, width, height)


class ResizerRegistry:
    """Maps every resize type to its resizer.

    Built once at startup; registration takes a lock, lookups of types that
    were never registered fail instead of silently falling back.
    """

    def __init__(self, resizers: Dict[ResizeType, Resizer] = None):
        self._lock = threading.Lock()
        self._resizers: Dict[ResizeType, Resizer] = {}
        for resize_type, resizer in (resizers or {}).items():
            self.register(resize_type, resizer)

    def register(self, resize_type: ResizeType, resizer: Resizer):
        with self._lock:
            log.info("Registering resizer %s", resize_type.value)
            self._resizers[ResizeType(resize_type)] = resizer

    def get(self, resize_type: ResizeType) -> Resizer:
        with self._lock:
            resizer = self._resizers.get(resize_type)
        if resizer is None:
            raise ImageTransformException(f"No resizer registered for type '{ResizeType(resize_type).value}'")
        return resizer

    def types(self) -> List[ResizeType]:
        with self._lock:
            return list(self._resizers)

    def resize(self, image: Image.Image, width: int, height: int, resize_type: ResizeType) -> Image.Image:
        return self.get(resize_type).resize(image, width, height)


def default_registry() -> ResizerRegistry:
    return ResizerRegistry({
        ResizeType.RESIZE: PlainResizer(),
        ResizeType.FIT: FitResizer(),
        ResizeType.CROP: CropResizer(),
    })
