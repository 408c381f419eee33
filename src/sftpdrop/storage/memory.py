"""In-memory chunk store backed by a KeyValueStore."""

import logging
import time
from typing import Callable, Optional

from sftpdrop.storage.base import ChunkStore, chunk_key, is_chunk_key
from sftpdrop.storage.kv import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


class MemoryChunkStore(ChunkStore):
    """Chunk store over any KeyValueStore.

    Only valid for a single process: every chunk of an upload must land on
    the same store instance.
    """

    def __init__(
        self,
        kv: Optional[KeyValueStore] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv or InMemoryKeyValueStore(clock=clock)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        await self.kv.set(chunk_key(upload_id, chunk_index), bytes(data), ttl_seconds=self.ttl_seconds)

    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        return await self.kv.get(chunk_key(upload_id, chunk_index))

    async def delete_all(self, upload_id: str, total_chunks: int) -> int:
        removed = 0
        for index in range(total_chunks):
            if await self.kv.delete(chunk_key(upload_id, index)):
                removed += 1
        return removed

    async def sweep_expired(self, max_age_seconds: float) -> int:
        now = self._clock()
        removed = await self.kv.purge_expired()
        for key, entry in await self.kv.items():
            if is_chunk_key(key) and now - entry.written_at > max_age_seconds:
                if await self.kv.delete(key):
                    removed += 1
        if removed:
            logger.info("Swept expired chunks", extra={"removed": removed, "backend": "memory"})
        return removed

    def get_backend_name(self) -> str:
        return "memory"
