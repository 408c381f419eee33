"""Background sweep of abandoned chunks and expired rate-limit windows."""

import asyncio
import logging
from typing import Iterable, Optional

from sftpdrop.storage.base import ChunkStore
from sftpdrop.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


class ChunkJanitor:
    """Runs ``sweep_expired`` on a fixed interval, independent of any upload."""

    def __init__(
        self,
        store: ChunkStore,
        max_age_seconds: float,
        interval_seconds: float,
        kv_stores: Iterable[KeyValueStore] = (),
    ):
        self.store = store
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self.kv_stores = list(kv_stores)
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        """Run a single sweep pass. Failures are logged, never raised."""
        removed = 0
        try:
            removed = await self.store.sweep_expired(self.max_age_seconds)
        except Exception as e:
            logger.error(
                "Chunk sweep failed",
                extra={"backend": self.store.get_backend_name(), "error": str(e)},
                exc_info=True,
            )

        for kv in self.kv_stores:
            try:
                await kv.purge_expired()
            except Exception as e:
                logger.warning("Key-value purge failed", extra={"error": str(e)})

        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="chunk-janitor")
            logger.info(
                "Chunk janitor started",
                extra={
                    "interval_seconds": self.interval_seconds,
                    "max_age_seconds": self.max_age_seconds,
                },
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
