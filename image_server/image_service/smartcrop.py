"""Face aware cropping.

The crop window is centered on the biggest face found by an OpenCV Haar
cascade. Images without a usable face are handed to the fallback resizer.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

import cv2
import numpy as np
from PIL import Image  # type: ignore[import]

from image_server.image_service.resize import CropResizer, Resizer, crop_bounds, thumbnail

log = logging.getLogger(__name__)


class NoRegionFound(Exception):
    """No face big enough to anchor the crop was detected."""


@dataclass(frozen=True)
class Region:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def scale(self, factor: float) -> "Region":
        return Region(
            int(self.x * factor),
            int(self.y * factor),
            int(self.width * factor),
            int(self.height * factor),
        )


class RegionDetector(Protocol):
    def detect(self, image: Image.Image) -> List[Region]:
        ...


class HaarFaceDetector:
    """Detects faces with an OpenCV Haar cascade classifier."""

    def __init__(self, cascade_path: Optional[str] = None):
        self.cascade_path = cascade_path or cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        self._local = threading.local()
        if self.cascade.empty():
            raise ValueError(f"Could not load haar cascade {self.cascade_path}")

    @property
    def cascade(self):
        # cv2.CascadeClassifier is not safe to share between threads
        cascade = getattr(self._local, "cascade", None)
        if cascade is None:
            cascade = cv2.CascadeClassifier(self.cascade_path)
            self._local.cascade = cascade
        return cascade

    def detect(self, image: Image.Image) -> List[Region]:
        gray = np.asarray(image.convert("L"))
        faces = self.cascade.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5)
        return [Region(int(x), int(y), int(w), int(h)) for (x, y, w, h) in faces]


def normalize_input(image: Image.Image, max_size: int) -> Tuple[Image.Image, float]:
    """Downscales the image so its longest side is at most max_size.

    Returns the working image and the factor mapping working coordinates
    back to the source.
    """
    longest = max(image.width, image.height)
    if longest <= max_size:
        return image, 1.0

    scale = longest / max_size
    size = (max(1, int(image.width / scale)), max(1, int(image.height / scale)))
    log.debug("Normalizing %dx%d to %dx%d", image.width, image.height, size[0], size[1])
    return image.resize(size, Image.LANCZOS), scale


def crop_window(region: Region, bounds: Tuple[int, int], target: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Window with the target ratio, centered on the region and inside bounds."""
    image_width, image_height = bounds
    target_width, target_height = target
    ratio = target_width / target_height

    # smallest window with the target ratio holding the region and the target box
    width = max(region.width, region.height * ratio, target_width)
    height = width / ratio

    # shrink to the image if needed, keeping the ratio
    if width > image_width:
        width = image_width
        height = width / ratio
    if height > image_height:
        height = image_height
        width = height * ratio

    center_x, center_y = region.center
    left = min(max(center_x - width / 2, 0), image_width - width)
    top = min(max(center_y - height / 2, 0), image_height - height)

    return int(left), int(top), int(left + width), int(top + height)


class SmartcropResizer:
    def __init__(
        self,
        detector: RegionDetector,
        fallback: Resizer = None,
        working_size: int = 1024,
        min_region_fraction: float = 0.005,
    ):
        self.detector = detector
        self.fallback = fallback or CropResizer()
        self.working_size = working_size
        self.min_region_fraction = min_region_fraction

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        try:
            return self.smart_resize(image, width, height)
        except NoRegionFound:
            log.debug("No face found, using fallback resizer")
        except Exception as e:
            log.warning("Unexpected error during face detection: %s", e)

        return self.fallback.resize(image, width, height)

    def find_region(self, image: Image.Image) -> Region:
        working, scale = normalize_input(image, self.working_size)
        start = time.monotonic()
        regions = self.detector.detect(working)
        log.debug("Faces found %d in %.3fs", len(regions), time.monotonic() - start)

        if not regions:
            raise NoRegionFound()

        biggest = max(regions, key=lambda r: r.area)
        if biggest.area < self.min_region_fraction * working.width * working.height:
            raise NoRegionFound()

        return biggest.scale(scale)

    def smart_resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        if width <= 0 or height <= 0:
            raise NoRegionFound()

        width, height = crop_bounds(image, width, height)
        region = self.find_region(image)
        box = crop_window(region, image.size, (width, height))
        log.debug("Cutout %s for face at (%d|%d)", box, region.x, region.y)

        return thumbnail(image.crop(box), width, height)
