"""
Size configuration registry.

The registry is loaded once at startup from a JSON document of the form::

    {"allowedEntries": [{"name": "50x50", "width": 50, "height": 50, "type": "crop"}]}

and is read-only afterwards.
"""
import json
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from image_server.image_service.models import ResizeType, SizeEntry, SizeEntryList

log = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when the size configuration cannot be loaded."""


class SizeConfig:
    def __init__(self, entries: List[SizeEntry]):
        self._entries: Dict[str, SizeEntry] = {}
        for entry in entries:
            if entry.name in self._entries:
                # lookups always resolved to the first entry with a name
                log.warning("Ignoring duplicate size entry %s", entry.name)
                continue
            self._entries[entry.name] = entry

    @classmethod
    def from_bytes(cls, data: bytes, allowed_types: Optional[Iterable[ResizeType]] = None) -> "SizeConfig":
        try:
            raw = SizeEntryList.model_validate(json.loads(data))
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(f"Invalid size configuration: {e}") from e

        allowed = set(allowed_types) if allowed_types is not None else set(ResizeType)
        entries = [validate_entry(element, allowed) for element in raw.allowed_entries]
        log.info("Loaded %d size entries", len(entries))
        return cls(entries)

    @classmethod
    def from_file(cls, path: str, allowed_types: Optional[Iterable[ResizeType]] = None) -> "SizeConfig":
        try:
            with open(path, "rb") as fp:
                data = fp.read()
        except OSError as e:
            raise ConfigurationError(f"Could not read size configuration {path}: {e}") from e
        return cls.from_bytes(data, allowed_types)

    def lookup(self, name: Optional[str]) -> Optional[SizeEntry]:
        if not name:
            return None
        return self._entries.get(name)

    def entries(self) -> List[SizeEntry]:
        return list(self._entries.values())

    def __len__(self):
        return len(self._entries)


def validate_entry(element: Dict, allowed: set) -> SizeEntry:
    name = element.get("name") or ""
    if not isinstance(name, str) or not name:
        raise ConfigurationError("Every size entry needs a non-empty name")

    width = element.get("width")
    height = element.get("height")
    width = 0 if width is None else width
    height = 0 if height is None else height
    for value in (width, height):
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f'The width and height of the configuration element with name "{name}" must be integers')

    if width <= 0 and height <= 0:
        raise ConfigurationError(f'The width and height of the configuration element with name "{name}" are invalid')

    type_name = element.get("type") or ResizeType.RESIZE.value
    try:
        resize_type = ResizeType(type_name)
    except ValueError:
        resize_type = None
    if resize_type is None or resize_type not in allowed:
        choices = ", ".join(sorted(t.value for t in allowed))
        raise ConfigurationError(f'Type must be one of {choices} at element "{name}"')

    return SizeEntry(name=name, width=width, height=height, type=resize_type)
