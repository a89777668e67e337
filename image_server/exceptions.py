"""
    Centralized exception handling for the FastAPI application.
"""
from fastapi import Request, HTTPException
from fastapi.responses import Response
import logging

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class ImageNotFoundException(APIException):
    """Exception for when neither the image nor its original can be found."""
    def __init__(self, namespace: str, identifier: str, size_name: str = None):
        detail = f"Image '{identifier}' not found in namespace '{namespace}'"
        if size_name:
            detail += f" (size '{size_name}')"
        super().__init__(status_code=404, detail=detail + ".")

class InvalidRequestException(APIException):
    """Malformed path segments are answered like a missing image."""
    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)

class ImageDecodeException(APIException):
    """Exception for image bytes that cannot be decoded."""
    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)

class ImageTransformException(APIException):
    """Exception for a resize that cannot be produced."""
    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)

class InvalidImageException(APIException):
    """Exception for invalid image files."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class ImageExistsException(APIException):
    """Exception for uploads that reuse an existing filename."""
    def __init__(self, namespace: str, filename: str):
        super().__init__(status_code=409, detail=f"Image '{filename}' already exists in namespace '{namespace}'.")

class StorageException(APIException):
    """Exception for S3 or DynamoDB failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

class ConfigurationMissingException(APIException):
    """Exception for a request arriving before the server is wired up."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    log.error("%d %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail, exc_info=exc)
    return Response(status_code=exc.status_code)

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error("%d %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail)
    return Response(status_code=exc.status_code, headers=getattr(exc, "headers", None))

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error("Unhandled Exception on %s: %s", request.url.path, str(exc), exc_info=exc)
    return Response(status_code=500)

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
