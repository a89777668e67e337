"""HTTP cache validation for served images."""
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Dict, Mapping
import logging

from image_server.image_service.models import ImageObject

log = logging.getLogger(__name__)

DISTANT_PAST = datetime.min.replace(tzinfo=timezone.utc)


def http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def parse_http_date(value: str) -> datetime:
    """Unparsable dates count as the distant past."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DISTANT_PAST
    if parsed is None:
        return DISTANT_PAST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _upload_date(image: ImageObject) -> datetime:
    # browsers only echo second precision
    upload_date = image.upload_date.replace(microsecond=0)
    if upload_date.tzinfo is None:
        upload_date = upload_date.replace(tzinfo=timezone.utc)
    return upload_date


def is_modified(image: ImageObject, headers: Mapping[str, str]) -> bool:
    """Returns True if the image must be delivered, False if the client copy is fresh."""
    cache_control = headers.get("cache-control", "")
    if "no-cache" in [d.strip().lower() for d in cache_control.split(",")]:
        log.debug("Is modified, because caching not enabled")
        return True

    modified_header = headers.get("if-modified-since")
    if modified_header:
        modified_since = parse_http_date(modified_header)
    else:
        modified_since = datetime.now(timezone.utc)

    if _upload_date(image) > modified_since:
        log.debug("Is modified, because upload date after modified date")
        return True

    none_match = headers.get("if-none-match", "").strip().strip('"')
    if image.fingerprint != none_match:
        log.debug("Is modified, because md5 mismatch. %s != %s", image.fingerprint, none_match)
        return True

    log.debug("Not modified")
    return False


def cache_headers(image: ImageObject, max_age: int) -> Dict[str, str]:
    """Caching headers for a delivered image. Date mirrors Last-Modified."""
    upload_date = _upload_date(image)
    last_modified = http_date(upload_date)
    return {
        "Etag": image.fingerprint,
        "Cache-Control": f"max-age={max_age}",
        "Last-Modified": last_modified,
        "Expires": http_date(upload_date + timedelta(seconds=max_age)),
        "Date": last_modified,
    }
