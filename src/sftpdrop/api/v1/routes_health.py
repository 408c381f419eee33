"""Health check endpoint for the SFTP drop service."""

from fastapi import APIRouter

from sftpdrop.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Reports the configured chunk store without touching it, so the check
    stays fast even when the backend is slow.
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "chunk_store": settings.CHUNK_STORE_BACKEND,
    }
