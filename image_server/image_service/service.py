from typing import Any, Dict, Optional
from io import BytesIO
import json
import logging
from PIL import Image, UnidentifiedImageError

from image_server.storage.store import ImageStore
from image_server.image_service.models import ImageObject
from image_server.exceptions import InvalidImageException, ImageExistsException

log = logging.getLogger(__name__)

MIME_MAP = {
    "JPEG": "image/jpeg",
    # multi-picture jpeg from phones and cameras
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
}

def validate_image_bytes(file_bytes: bytes) -> str:
    """Validate that the uploaded file is a real image and return its content type."""
    try:
        img = Image.open(BytesIO(file_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError):
        raise InvalidImageException("Invalid image file")

    mime_type = MIME_MAP.get((img.format or "").upper())
    if mime_type is None:
        raise InvalidImageException(f"Unsupported image type: {img.format}")
    return mime_type

def parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    """Parses the free-form metadata form field, a JSON object of strings."""
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except ValueError:
        raise InvalidImageException("metadata must be a JSON object")
    if not isinstance(metadata, dict) or not all(isinstance(v, str) for v in metadata.values()):
        raise InvalidImageException("metadata must be a JSON object of strings")
    return metadata

def save_original(
    store: ImageStore,
    namespace: str,
    filename: str,
    data: bytes,
    metadata: Dict[str, Any],
) -> ImageObject:
    """Saves an original upload, filenames are unique per namespace."""
    if not namespace or not filename:
        raise InvalidImageException("namespace and filename must not be empty")
    if store.is_valid_id(filename):
        raise InvalidImageException("filename must not look like an image id")

    content_type = validate_image_bytes(data)

    if store.find_image_by_parent_filename(namespace, filename) is not None:
        raise ImageExistsException(namespace, filename)

    image = store.create_image(namespace, filename, data, content_type, metadata)
    log.info("Saved original %s/%s", namespace, filename)
    return image
