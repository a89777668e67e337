"""Image decoding and encoding.

Only jpeg, png and gif are served. Images Pillow cannot read are passed
through an external converter (ImageMagick ``convert``) once and read back
as png.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError  # type: ignore[import]

from image_server.exceptions import ImageDecodeException, ImageTransformException

log = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("jpeg", "png", "gif")

JPEG_QUALITY = 95
PNG_COMPRESS_LEVEL = 9
GIF_COLORS = 256


def _open(data: bytes) -> Tuple[Image.Image, str]:
    img = Image.open(BytesIO(data))
    # Pillow decodes lazily, force the pixels so broken data fails here
    img.load()
    image_format = (img.format or "").lower()
    if image_format == "mpo":
        # first frame of a multi-picture jpeg
        image_format = "jpeg"
    if image_format not in SUPPORTED_FORMATS:
        raise ValueError(f"unsupported image format '{image_format}'")
    if img.mode not in ("RGB", "RGBA", "L"):
        has_alpha = img.mode in ("LA", "PA") or "transparency" in img.info
        img = img.convert("RGBA" if has_alpha else "RGB")
    return img, image_format


def decode(data: bytes, converter: Optional[str] = None, timeout: float = 30.0) -> Tuple[Image.Image, str]:
    """Decodes raw bytes into an image and its format name."""
    try:
        return _open(data)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        decode_error = e

    if converter:
        try:
            img, _ = _open(convert_with_fallback(data, converter, timeout))
            log.info("Decoded image with %s fallback", converter)
            return img, "png"
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            log.warning("Fallback conversion with %s failed: %s", converter, e)

    raise ImageDecodeException(f"Image could not be decoded: {decode_error}")


def convert_with_fallback(data: bytes, converter: str, timeout: float) -> bytes:
    """Runs ``<converter> <input> <output>.png`` and returns the png bytes."""
    source = tempfile.NamedTemporaryFile(prefix="convert_original_", delete=False)
    target = tempfile.NamedTemporaryFile(prefix="convert_target_", suffix=".png", delete=False)
    try:
        with source:
            source.write(data)
        target.close()

        log.info("%s %s %s", converter, source.name, target.name)
        subprocess.run(
            [converter, source.name, target.name],
            check=True,
            timeout=timeout,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )

        with open(target.name, "rb") as fp:
            return fp.read()
    finally:
        for path in (source.name, target.name):
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass


def encode(img: Image.Image, image_format: str) -> bytes:
    """Encodes the image with the fixed settings for the given format."""
    buf = BytesIO()
    if image_format == "jpeg":
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    elif image_format == "png":
        img.save(buf, format="PNG", compress_level=PNG_COMPRESS_LEVEL)
    elif image_format == "gif":
        if img.mode != "P":
            img = img.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE, colors=GIF_COLORS)
        img.save(buf, format="GIF")
    else:
        raise ImageTransformException(f"invalid image format '{image_format}' given")
    return buf.getvalue()
