from fastapi import Request
from image_server.exceptions import ConfigurationMissingException
from image_server.image_service.resolver import VariantResolver
from image_server.storage.store import ImageStore

def get_image_store(request: Request) -> ImageStore:
    """Dependency provider for ImageStore"""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise ConfigurationMissingException("image store is not initialized")
    return store

def get_resolver(request: Request) -> VariantResolver:
    """Dependency provider for VariantResolver"""
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise ConfigurationMissingException("size configuration is not initialized")
    return resolver
