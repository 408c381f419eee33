"""Google Cloud Storage chunk store."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from google.api_core.exceptions import NotFound
from google.cloud import storage

from sftpdrop.core.config import settings
from sftpdrop.storage.base import ChunkStore, chunk_key, is_chunk_key

logger = logging.getLogger(__name__)


class GCSChunkStore(ChunkStore):
    """One blob per chunk under a prefix of a GCS bucket."""

    def __init__(self, bucket_name: str | None = None, prefix: str | None = None):
        self.bucket_name = bucket_name if bucket_name is not None else settings.GCS_BUCKET_NAME
        self.prefix = prefix if prefix is not None else settings.GCS_CHUNK_PREFIX
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=settings.GCP_PROJECT_ID or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    def _blob_name(self, upload_id: str, chunk_index: int) -> str:
        return f"{self.prefix}{chunk_key(upload_id, chunk_index)}"

    def _upload(self, blob_name: str, data: bytes) -> None:
        blob = self._get_bucket().blob(blob_name)
        blob.upload_from_string(data, content_type="application/octet-stream")

    def _download(self, blob_name: str) -> Optional[bytes]:
        blob = self._get_bucket().blob(blob_name)
        try:
            return blob.download_as_bytes()
        except NotFound:
            return None

    def _delete(self, blob_name: str) -> bool:
        try:
            self._get_bucket().blob(blob_name).delete()
            return True
        except NotFound:
            return False

    def _sweep(self, max_age_seconds: float) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        removed = 0
        for blob in self._get_bucket().list_blobs(prefix=self.prefix):
            name = blob.name[len(self.prefix):]
            if not is_chunk_key(name) or blob.updated is None:
                continue
            if blob.updated < cutoff and self._delete(blob.name):
                removed += 1
        return removed

    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        await asyncio.to_thread(self._upload, self._blob_name(upload_id, chunk_index), bytes(data))

    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        return await asyncio.to_thread(self._download, self._blob_name(upload_id, chunk_index))

    async def delete_all(self, upload_id: str, total_chunks: int) -> int:
        names = [self._blob_name(upload_id, index) for index in range(total_chunks)]

        def _delete_all() -> int:
            return sum(1 for name in names if self._delete(name))

        return await asyncio.to_thread(_delete_all)

    async def sweep_expired(self, max_age_seconds: float) -> int:
        removed = await asyncio.to_thread(self._sweep, max_age_seconds)
        if removed:
            logger.info(
                "Swept expired chunks",
                extra={"removed": removed, "backend": "gcs", "bucket": self.bucket_name},
            )
        return removed

    def get_backend_name(self) -> str:
        return "gcs"
