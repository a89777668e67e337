import hashlib
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from image_server.exceptions import StorageException
from image_server.image_service.models import (
    META_HEIGHT,
    META_ORIGINAL_FILENAME,
    META_ORIGINAL_REF,
    META_RESIZE_TYPE,
    META_SIZE,
    META_WIDTH,
    ImageObject,
    SizeEntry,
    new_image_id,
)
from image_server.storage.dynamodb import DynamoDBService
from image_server.storage.s3 import S3Service

log = logging.getLogger(__name__)


def random_filename(extension: str) -> str:
    """Generates the name of a derivative."""
    return f"{hashlib.sha256(os.urandom(32)).hexdigest()}.{extension}"


def derivative_metadata(original: ImageObject, entry: SizeEntry, width: int, height: int) -> Dict[str, Any]:
    """Derivative keys first, then every parent key that is not already set."""
    metadata = {
        META_WIDTH: width,
        META_HEIGHT: height,
        META_ORIGINAL_FILENAME: original.original_filename,
        META_ORIGINAL_REF: original.image_id,
        META_RESIZE_TYPE: entry.type.value,
        META_SIZE: entry.size_key,
    }
    for key, value in original.metadata.items():
        metadata.setdefault(key, value)
    return metadata


class ImageStore:
    """Image objects on S3 with their documents in DynamoDB.

    Bytes are always written before the document, so a lookup never sees an
    object whose content is missing.
    """

    def __init__(self, s3: S3Service, db: DynamoDBService):
        self.s3 = s3
        self.db = db

    def is_valid_id(self, identifier: str) -> bool:
        try:
            return str(uuid.UUID(identifier)) == identifier.lower()
        except (ValueError, AttributeError):
            return False

    def _find(self, filters: Dict[str, Any]) -> Optional[ImageObject]:
        try:
            item = self.db.find_first(filters)
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB lookup %s failed: %s", filters, e)
            raise StorageException(f"Failed to query images: {e}")
        return ImageObject.from_item(item) if item else None

    def find_image_by_parent_id(self, namespace: str, image_id: str, entry: Optional[SizeEntry] = None) -> Optional[ImageObject]:
        """Returns the derivative of image_id for entry, or the image itself when entry is None."""
        if entry is None:
            try:
                item = self.db.get_metadata(image_id)
            except (BotoCoreError, ClientError) as e:
                log.error("DynamoDB get_metadata failed: %s", e)
                raise StorageException(f"Failed to get image metadata: {e}")
            if not item or item.get("namespace") != namespace:
                return None
            return ImageObject.from_item(item)

        return self._find({
            "namespace": namespace,
            f"metadata.{META_ORIGINAL_REF}": image_id,
            f"metadata.{META_SIZE}": entry.size_key,
            f"metadata.{META_RESIZE_TYPE}": entry.type.value,
        })

    def find_image_by_parent_filename(self, namespace: str, filename: str, entry: Optional[SizeEntry] = None) -> Optional[ImageObject]:
        """Returns the derivative of filename for entry, or the image itself when entry is None."""
        if entry is None:
            return self._find({"namespace": namespace, "filename": filename})

        return self._find({
            "namespace": namespace,
            f"metadata.{META_ORIGINAL_FILENAME}": filename,
            f"metadata.{META_SIZE}": entry.size_key,
            f"metadata.{META_RESIZE_TYPE}": entry.type.value,
        })

    def find_image(self, namespace: str, identifier: str, entry: Optional[SizeEntry] = None) -> Optional[ImageObject]:
        if self.is_valid_id(identifier):
            # ids are stored lowercase
            return self.find_image_by_parent_id(namespace, identifier.lower(), entry)
        return self.find_image_by_parent_filename(namespace, identifier, entry)

    def read(self, image: ImageObject) -> bytes:
        try:
            return self.s3.download(image.s3_key)
        except (BotoCoreError, ClientError) as e:
            log.error("S3 download of %s failed: %s", image.s3_key, e)
            raise StorageException(f"Failed to read image from S3: {e}")

    def create_image(
        self,
        namespace: str,
        filename: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ImageObject:
        """Stores bytes and metadata under a new id."""
        image_id = new_image_id()
        image = ImageObject(
            image_id=image_id,
            namespace=namespace,
            filename=filename,
            content_type=content_type,
            length=len(data),
            md5=hashlib.md5(data).hexdigest(),
            upload_date=datetime.now(timezone.utc).replace(microsecond=0),
            s3_key=f"{namespace}/{image_id}",
            metadata=metadata or {},
        )

        try:
            self.s3.upload(data, key=image.s3_key, content_type=content_type)
        except (BotoCoreError, ClientError) as e:
            log.error("S3 upload failed: %s", e)
            raise StorageException(f"Failed to upload image to S3: {e}")

        try:
            self.db.put_metadata(image.to_item())
        except (BotoCoreError, ClientError) as e:
            log.error("DynamoDB put_metadata failed: %s", e)
            self._discard(image.s3_key)
            raise StorageException(f"Failed to save image metadata: {e}")

        log.info("Saved image %s/%s as %s", namespace, filename, image.image_id)
        return image

    def _discard(self, key: str):
        try:
            self.s3.delete(key)
        except (BotoCoreError, ClientError) as e:
            log.warning("Could not remove orphaned object %s: %s", key, e)

    def store_child_image(
        self,
        namespace: str,
        image_format: str,
        data: bytes,
        width: int,
        height: int,
        original: ImageObject,
        entry: SizeEntry,
    ) -> ImageObject:
        """Stores a derivative of original linked through its metadata."""
        return self.create_image(
            namespace,
            random_filename(image_format),
            data,
            content_type=f"image/{image_format}",
            metadata=derivative_metadata(original, entry, width, height),
        )
