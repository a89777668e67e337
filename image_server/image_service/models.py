from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from uuid import uuid4

# Metadata keys that link a derivative to the image it was produced from
META_ORIGINAL_FILENAME = "originalFilename"
META_ORIGINAL_REF = "originalRef"
META_RESIZE_TYPE = "resizeType"
META_SIZE = "size"
META_WIDTH = "width"
META_HEIGHT = "height"

def new_image_id() -> str:
    """Generates a new unique image ID."""
    return str(uuid4())

def from_dynamo(value: Any) -> Any:
    """DynamoDB returns every number as Decimal."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value

class ResizeType(str, Enum):
    RESIZE = "resize"
    FIT = "fit"
    CROP = "crop"
    SMARTCROP = "smartcrop"

class SizeEntry(BaseModel):
    """One allowed size configuration. Non-positive width or height means unspecified."""
    model_config = ConfigDict(frozen=True)

    name: str
    width: int = 0
    height: int = 0
    type: ResizeType = ResizeType.RESIZE

    @property
    def size_key(self) -> str:
        # requested dimensions, used for derivative lookups
        return f"{self.width}x{self.height}"

class ImageObject(BaseModel):
    image_id: str = Field(default_factory=new_image_id)
    namespace: str
    filename: str
    content_type: str
    length: int
    md5: str
    upload_date: datetime
    s3_key: str
    metadata: Dict[str, Any] = {}

    @property
    def fingerprint(self) -> str:
        return self.md5

    @property
    def original_filename(self) -> str:
        """Name of the root ancestor, which is the image itself for originals."""
        return self.metadata.get(META_ORIGINAL_FILENAME, self.filename)

    def to_item(self) -> Dict[str, Any]:
        item = self.model_dump()
        # Dynamo needs upload_date as ISO string
        item["upload_date"] = item["upload_date"].isoformat()
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ImageObject":
        item = from_dynamo(item)
        item["upload_date"] = datetime.fromisoformat(item["upload_date"])
        return cls(**item)

class UploadResponse(BaseModel):
    image_id: str
    namespace: str
    filename: str
    content_type: str
    length: int
    md5: str
    upload_date: datetime
    metadata: Dict[str, Any]

class SizeEntryList(BaseModel):
    """Raw shape of the size configuration file."""
    model_config = ConfigDict(populate_by_name=True)

    allowed_entries: List[Dict[str, Any]] = Field(default=[], alias="allowedEntries")
