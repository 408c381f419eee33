"""Main application entrypoint for the SFTP drop service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sftpdrop.api.deps import rate_limit_kv
from sftpdrop.api.errors import register_exception_handlers
from sftpdrop.api.v1 import routes_health
from sftpdrop.api.v1.routes_upload import router as upload_router
from sftpdrop.core.config import settings
from sftpdrop.core.logging import setup_logging
from sftpdrop.core.middleware import HTTPErrorLoggingMiddleware, SecurityHeadersMiddleware
from sftpdrop.storage.factory import get_chunk_store
from sftpdrop.storage.janitor import ChunkJanitor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    janitor = ChunkJanitor(
        get_chunk_store(),
        max_age_seconds=settings.CHUNK_MAX_AGE_SECONDS,
        interval_seconds=settings.CHUNK_SWEEP_INTERVAL_SECONDS,
        kv_stores=[rate_limit_kv],
    )
    janitor.start()
    app.state.janitor = janitor
    try:
        yield
    finally:
        await janitor.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(HTTPErrorLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)

    logger.info(
        "Application configured",
        extra={"chunk_store": settings.CHUNK_STORE_BACKEND, "env": settings.ENV},
    )
    return app


# Export app instance for ASGI servers
app = create_app()
