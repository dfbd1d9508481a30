"""Recorder Backend Application.

This is the main entry point for the recorder upload service. Logged-in
users record short audio clips in the browser and upload them here; the
service stores them in the local media library or hands them to an
external storage handler.

Modules:
    - uploads: upload intake, temp staging, storage routing and responses
    - media: default storage backend and download endpoints
    - auth: identity forwarded by the host and upload nonces
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recorder.config import get_config
from recorder.media.router import router as media_router
from recorder.media.service import get_media_library, set_media_library
from recorder.uploads.pipeline import build_upload_pipeline, new_listener_executor, set_upload_pipeline
from recorder.uploads.router import router as uploads_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# botocore logs signed requests (including session tokens) at DEBUG, and
# urllib3/httpx log every connection.
for _noisy in (
    "botocore",
    "boto3",
    "s3transfer",
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in recorder.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    library = get_media_library()
    notifier = new_listener_executor()
    set_upload_pipeline(build_upload_pipeline(config, library, executor=notifier))
    logger.info(
        "Upload pipeline ready: max_bytes=%d media_dir=%s",
        config.uploads.max_bytes,
        library.storage_dir,
    )

    yield  # Application runs here

    # Shutdown
    set_upload_pipeline(None)
    notifier.shutdown(wait=True)
    library.close()
    set_media_library(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Recorder API",
    description="Backend service for the in-browser audio recorder",
    version="0.3.0",
    lifespan=lifespan,
)

# Register all routers
app.include_router(uploads_router)
app.include_router(media_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
