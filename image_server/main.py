from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from contextlib import asynccontextmanager
import uvicorn
import logging

from image_server.storage.dynamodb import DynamoDBService
from image_server.storage.s3 import S3Service
from image_server.storage.store import ImageStore
from image_server.image_service.config import SizeConfig
from image_server.image_service.models import ResizeType
from image_server.image_service.resize import ResizerRegistry, default_registry
from image_server.image_service.resolver import VariantResolver
from image_server.image_service.smartcrop import HaarFaceDetector, SmartcropResizer
from image_server.settings import settings
from image_server.routers.images import router as image_router
from image_server.exceptions import add_exception_handlers

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("image-server")

def build_resizers() -> ResizerRegistry:
    """Registers the resizers for every enabled resize type."""
    resizers = default_registry()
    if settings.smartcrop_enabled:
        resizers.register(
            ResizeType.SMARTCROP,
            SmartcropResizer(
                HaarFaceDetector(settings.haarcascade_path),
                working_size=settings.smartcrop_working_size,
                min_region_fraction=settings.smartcrop_min_region_fraction,
            ),
        )
    return resizers

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Loads the size configuration and opens the store (S3, DynamoDB).
    """
    # Initialize resources
    resizers = build_resizers()
    size_config = SizeConfig.from_file(settings.image_config_path, resizers.types())

    s3 = S3Service()
    db = DynamoDBService()
    app.state.store = ImageStore(s3, db)
    app.state.resolver = VariantResolver(
        app.state.store,
        size_config,
        resizers,
        converter=settings.converter_binary or None,
        converter_timeout=settings.converter_timeout,
    )
    log.info("Image server started with %d size entries", len(size_config))
    yield
    # Cleanup resources
    s3.close()
    db.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Image server with on-demand resizing",
)

# Add exception handlers
add_exception_handlers(app)

# Check Health
@app.get("/", response_class=HTMLResponse)
def read_root():
    """
        Default end point

    """
    return "<html><h1>Image Server.</h1></html>"

# Add the routers
app.include_router(image_router)

def run():
    """Runs the server. Date must mirror Last-Modified, so uvicorn must not add its own."""
    uvicorn.run("image_server.main:app", host="0.0.0.0", port=8000, date_header=False)

if __name__ == "__main__":
    run()
