from fastapi import APIRouter, Depends, UploadFile, File, Form, Query, Request, Response
from typing import Optional
import logging

from image_server.dependencies import get_image_store, get_resolver
from image_server.image_service.caching import cache_headers, is_modified
from image_server.image_service.models import UploadResponse
from image_server.image_service.resolver import ResolutionStatus, VariantResolver
from image_server.image_service.service import parse_metadata, save_original
from image_server.exceptions import InvalidRequestException
from image_server.storage.store import ImageStore
from image_server.settings import settings

log = logging.getLogger(__name__)

router = APIRouter(
    tags=["image-server"]
)

@router.get("/{namespace}/{identifier}")
def get_image(
    namespace: str,
    identifier: str,
    request: Request,
    size: Optional[str] = Query(None),
    resolver: VariantResolver = Depends(get_resolver),
):
    """Delivers an image, resizing it first when a known size is requested."""
    if not namespace.strip():
        raise InvalidRequestException("namespace must not be empty")
    if not identifier.strip():
        raise InvalidRequestException("filename must not be empty")

    log.info("Request on %s", request.url)

    resolution = resolver.resolve(namespace, identifier, size)
    image = resolution.image

    if resolution.status == ResolutionStatus.CREATED:
        data = resolution.data
        log.info("200 image %s/%s successfully resized and returned", namespace, identifier)
    elif not is_modified(image, request.headers):
        log.info("304 returning cached image %s/%s", namespace, identifier)
        return Response(status_code=304)
    else:
        data = resolver.store.read(image)
        log.info("200 image %s/%s found, no resizing", namespace, identifier)

    return Response(
        content=data,
        media_type=image.content_type,
        headers=cache_headers(image, settings.cache_max_age),
    )

@router.get("/{namespace}/")
@router.get("/{namespace}")
def get_without_filename(namespace: str):
    """Paths without a filename are answered like a missing image."""
    raise InvalidRequestException("filename must not be empty")

@router.post("/{namespace}", response_model=UploadResponse, status_code=201)
async def upload_image(
    namespace: str,
    file: UploadFile = File(...),
    filename: Optional[str] = Form(None),
    metadata: Optional[str] = Form(None),  # JSON object of strings
    store: ImageStore = Depends(get_image_store),
):
    """Uploads an original image with optional free-form metadata."""
    contents = await file.read()
    image = save_original(
        store,
        namespace=namespace,
        filename=filename or file.filename,
        data=contents,
        metadata=parse_metadata(metadata),
    )
    return UploadResponse(
        image_id=image.image_id,
        namespace=image.namespace,
        filename=image.filename,
        content_type=image.content_type,
        length=image.length,
        md5=image.md5,
        upload_date=image.upload_date,
        metadata=image.metadata,
    )
