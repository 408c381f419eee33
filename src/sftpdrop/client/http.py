"""Shared httpx client construction for the client-side tools."""

from typing import Optional

import httpx

from sftpdrop.core.config import settings

CHUNK_UPLOAD_PATH = "/api/v1/sftp/upload-chunk"
COMPLETE_UPLOAD_PATH = "/api/v1/sftp/complete-upload"
SIMPLE_UPLOAD_PATH = "/api/v1/sftp/upload"


def create_http_client(
    base_url: Optional[str] = None, timeout: Optional[float] = None
) -> httpx.AsyncClient:
    """Build an AsyncClient pointed at the upload service.

    The caller owns the client and must close it (``async with`` or ``aclose``).
    """
    return httpx.AsyncClient(
        base_url=base_url or settings.API_BASE_URL,
        timeout=timeout if timeout is not None else settings.CLIENT_REQUEST_TIMEOUT_SECONDS,
    )
