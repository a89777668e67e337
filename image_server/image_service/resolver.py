"""Find-or-create of image derivatives.

The store itself is the derivative cache: a derivative is looked up by its
parent, the requested size and the resize type, and only built when that
lookup misses. Creation is serialized per key so concurrent requests for the
same missing derivative build it once.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Hashable, Optional

from image_server.exceptions import ImageNotFoundException
from image_server.image_service import codec
from image_server.image_service.config import SizeConfig
from image_server.image_service.models import META_ORIGINAL_REF, ImageObject, SizeEntry
from image_server.image_service.resize import ResizerRegistry
from image_server.storage.store import ImageStore

log = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    EXISTING = "existing"
    CREATED = "created"


@dataclass
class Resolution:
    image: ImageObject
    status: ResolutionStatus
    # encoded bytes of a freshly created derivative
    data: Optional[bytes] = None


class KeyedLock:
    """One lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


class VariantResolver:
    def __init__(
        self,
        store: ImageStore,
        size_config: SizeConfig,
        resizers: ResizerRegistry,
        converter: Optional[str] = None,
        converter_timeout: float = 30.0,
    ):
        self.store = store
        self.size_config = size_config
        self.resizers = resizers
        self.converter = converter
        self.converter_timeout = converter_timeout
        self._creation_locks = KeyedLock()

    def resolve(self, namespace: str, identifier: str, size_name: Optional[str] = None) -> Resolution:
        entry = self.size_config.lookup(size_name)
        if size_name and entry is None:
            log.info("No size entry %s, delivering %s/%s unresized", size_name, namespace, identifier)

        found = self.store.find_image(namespace, identifier, entry)
        if found is not None:
            return Resolution(found, ResolutionStatus.EXISTING)

        if entry is None:
            raise ImageNotFoundException(namespace, identifier)

        original = self.store.find_image(namespace, identifier)
        if original is None:
            log.info("Could not find original image %s/%s", namespace, identifier)
            raise ImageNotFoundException(namespace, identifier, size_name)
        original = self._root(original)

        # keyed on the root id so requests by id and by filename share a lock
        with self._creation_locks.hold((namespace, original.image_id, entry)):
            found = self.store.find_image_by_parent_id(namespace, original.image_id, entry)
            if found is not None:
                return Resolution(found, ResolutionStatus.EXISTING)

            return self._create(namespace, original, entry)

    def _root(self, image: ImageObject) -> ImageObject:
        """Derivatives are always built from the root original."""
        seen = set()
        while META_ORIGINAL_REF in image.metadata and image.image_id not in seen:
            seen.add(image.image_id)
            parent = self.store.find_image_by_parent_id(image.namespace, image.metadata[META_ORIGINAL_REF])
            if parent is None:
                break
            image = parent
        return image

    def _create(self, namespace: str, original: ImageObject, entry: SizeEntry) -> Resolution:
        data = self.store.read(original)
        img, image_format = codec.decode(data, self.converter, self.converter_timeout)

        resized = self.resizers.resize(img, entry.width, entry.height, entry.type)
        encoded = codec.encode(resized, image_format)

        child = self.store.store_child_image(
            namespace,
            image_format,
            encoded,
            resized.width,
            resized.height,
            original,
            entry,
        )
        log.info(
            "Created %s derivative %s of %s/%s (%dx%d)",
            entry.name, child.image_id, namespace, original.filename, resized.width, resized.height,
        )
        return Resolution(child, ResolutionStatus.CREATED, encoded)
