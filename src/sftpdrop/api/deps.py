"""Request-scoped collaborators, swappable through ``app.dependency_overrides``."""

from functools import lru_cache

from fastapi import Depends

from sftpdrop.core.config import settings
from sftpdrop.core.retry import RetryPolicy
from sftpdrop.metadata.base import MetadataStore
from sftpdrop.metadata.sql import SQLMetadataStore
from sftpdrop.remote.base import RemoteTransferClient
from sftpdrop.remote.sftp import ParamikoSFTPClient
from sftpdrop.services.finalizer import UploadFinalizer
from sftpdrop.services.rate_limit import RateLimiter
from sftpdrop.storage.base import ChunkStore
from sftpdrop.storage.factory import get_chunk_store as _get_chunk_store
from sftpdrop.storage.kv import InMemoryKeyValueStore

# Shared with the janitor so expired windows get purged
rate_limit_kv = InMemoryKeyValueStore()
_rate_limiter = RateLimiter(store=rate_limit_kv)


def get_chunk_store() -> ChunkStore:
    return _get_chunk_store()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


@lru_cache(maxsize=1)
def get_metadata_store() -> MetadataStore:
    return SQLMetadataStore.from_url(settings.DATABASE_URL)


@lru_cache(maxsize=1)
def get_remote_client() -> RemoteTransferClient:
    return ParamikoSFTPClient(
        retry_policy=RetryPolicy.from_settings(settings),
        keepalive_seconds=settings.SFTP_KEEPALIVE_SECONDS,
        timeout_seconds=settings.SFTP_CONNECT_TIMEOUT_SECONDS,
    )


def get_finalizer(
    chunk_store: ChunkStore = Depends(get_chunk_store),
    remote_client: RemoteTransferClient = Depends(get_remote_client),
    metadata_store: MetadataStore = Depends(get_metadata_store),
) -> UploadFinalizer:
    return UploadFinalizer(
        chunk_store,
        remote_client,
        metadata_store,
        max_file_bytes=settings.max_upload_bytes,
        max_total_chunks=settings.MAX_TOTAL_CHUNKS,
        remote_dir=settings.SFTP_UPLOAD_DIR,
        table=settings.METADATA_TABLE,
        allowed_mime_types=settings.allowed_mime_types,
    )
