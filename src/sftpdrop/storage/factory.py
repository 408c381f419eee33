"""Chunk store selection."""

from typing import Dict

from sftpdrop.core.config import settings
from sftpdrop.storage.base import ChunkStore
from sftpdrop.storage.gcs import GCSChunkStore
from sftpdrop.storage.local import LocalChunkStore
from sftpdrop.storage.memory import MemoryChunkStore

_stores: Dict[str, ChunkStore] = {}


def get_chunk_store() -> ChunkStore:
    """Return the process-wide chunk store for the configured backend.

    Raises:
        ValueError: If CHUNK_STORE_BACKEND names an unknown backend
    """
    backend = settings.CHUNK_STORE_BACKEND
    store = _stores.get(backend)
    if store is not None:
        return store

    if backend == "memory":
        store = MemoryChunkStore(ttl_seconds=settings.CHUNK_MAX_AGE_SECONDS)
    elif backend == "local":
        store = LocalChunkStore(settings.CHUNK_STORE_DIR)
    elif backend == "gcs":
        store = GCSChunkStore()
    else:
        raise ValueError(f"Unknown chunk store backend: {backend}")

    _stores[backend] = store
    return store
