"""Cache-before-network media reads."""

import logging

import httpx

from sftpdrop.client.media_cache import DEFAULT_MIME_TYPE, MediaCache

logger = logging.getLogger(__name__)

DEFAULT_PATH_TEMPLATE = "/api/v1/sftp/serve/{file_id}"


class MediaFetcher:
    """Returns cached bytes when present, otherwise downloads and caches them."""

    def __init__(
        self,
        cache: MediaCache,
        client: httpx.AsyncClient,
        path_template: str = DEFAULT_PATH_TEMPLATE,
    ):
        self.cache = cache
        self.client = client
        self.path_template = path_template

    async def fetch(self, file_id: str) -> bytes:
        """
        Get the media for ``file_id``.

        Raises:
            httpx.HTTPStatusError: If the download is rejected
            httpx.HTTPError: If the request fails
        """
        cached = await self.cache.get(file_id)
        if cached is not None:
            logger.debug("Media cache hit", extra={"file_id": file_id})
            return cached

        response = await self.client.get(self.path_template.format(file_id=file_id))
        response.raise_for_status()

        content = response.content
        mime_type = response.headers.get("content-type", DEFAULT_MIME_TYPE).split(";")[0].strip()
        self.cache.put(file_id, content, mime_type)

        logger.debug(
            "Media downloaded",
            extra={"file_id": file_id, "size_bytes": len(content), "mime_type": mime_type},
        )
        return content
