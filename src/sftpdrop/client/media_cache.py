"""Two-tier client media cache: a bounded in-memory tier over a disk tier.

The cache is an optimization only. Every durable-tier failure is logged and
treated as a miss; nothing here raises into the caller on a failed write.
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Union

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class CacheEntry:
    file_id: str
    data: bytes
    mime_type: str
    timestamp: float

    @property
    def size(self) -> int:
        return len(self.data)


class MemoryTier:
    """Byte-bounded map that evicts the oldest-inserted entry first."""

    def __init__(self, limit_bytes: int):
        self.limit_bytes = limit_bytes
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._size = 0

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._entries

    def keys(self):
        return list(self._entries.keys())

    def get(self, file_id: str) -> Optional[CacheEntry]:
        return self._entries.get(file_id)

    def put(self, entry: CacheEntry) -> bool:
        """Insert ``entry``, evicting as needed. Returns False if it can never fit."""
        if entry.size > self.limit_bytes:
            return False

        self.remove(entry.file_id)
        while self._entries and self._size + entry.size > self.limit_bytes:
            _, evicted = self._entries.popitem(last=False)
            self._size -= evicted.size

        self._entries[entry.file_id] = entry
        self._size += entry.size
        return True

    def remove(self, file_id: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(file_id, None)
        if entry is not None:
            self._size -= entry.size
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0


class DiskTier:
    """One ``.bin`` payload plus a ``.json`` sidecar per entry.

    Files are named by the SHA-256 of the file id. Both files are replaced
    atomically and the sidecar is written last, so a sidecar always points at
    a complete payload.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _paths(self, file_id: str):
        digest = hashlib.sha256(file_id.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.bin", self.directory / f"{digest}.json"

    def _atomic_write(self, target: Path, data: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, target)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _write(self, entry: CacheEntry) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload_path, meta_path = self._paths(entry.file_id)
        sidecar = {
            "file_id": entry.file_id,
            "timestamp": entry.timestamp,
            "size": entry.size,
            "mime_type": entry.mime_type,
        }
        self._atomic_write(payload_path, entry.data)
        self._atomic_write(meta_path, json.dumps(sidecar).encode("utf-8"))

    def _load_sidecar(self, meta_path: Path) -> Optional[dict]:
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Corrupt cache sidecar", extra={"path": str(meta_path)})
            return None

    def _read(self, file_id: str) -> Optional[CacheEntry]:
        payload_path, meta_path = self._paths(file_id)
        sidecar = self._load_sidecar(meta_path)
        if sidecar is None:
            return None
        try:
            data = payload_path.read_bytes()
        except FileNotFoundError:
            return None
        if len(data) != sidecar.get("size"):
            # Payload replaced but sidecar not yet, or the reverse
            return None
        return CacheEntry(
            file_id=file_id,
            data=data,
            mime_type=sidecar.get("mime_type") or DEFAULT_MIME_TYPE,
            timestamp=float(sidecar.get("timestamp", 0)),
        )

    def _delete(self, file_id: str) -> None:
        payload_path, meta_path = self._paths(file_id)
        # Sidecar first so a half-deleted entry reads as a miss
        meta_path.unlink(missing_ok=True)
        payload_path.unlink(missing_ok=True)

    def _clear(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.iterdir():
            if path.suffix in (".bin", ".json"):
                path.unlink(missing_ok=True)

    def _sweep(self, max_age_seconds: float, now: float) -> int:
        if not self.directory.exists():
            return 0
        removed = 0
        for meta_path in self.directory.glob("*.json"):
            sidecar = self._load_sidecar(meta_path)
            if sidecar is not None and now - float(sidecar.get("timestamp", 0)) <= max_age_seconds:
                continue
            meta_path.unlink(missing_ok=True)
            meta_path.with_suffix(".bin").unlink(missing_ok=True)
            removed += 1
        return removed

    def _total_size(self) -> int:
        if not self.directory.exists():
            return 0
        total = 0
        for meta_path in self.directory.glob("*.json"):
            sidecar = self._load_sidecar(meta_path)
            if sidecar is not None:
                total += int(sidecar.get("size", 0))
        return total

    async def write(self, entry: CacheEntry) -> None:
        await asyncio.to_thread(self._write, entry)

    async def read(self, file_id: str) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._read, file_id)

    async def delete(self, file_id: str) -> None:
        await asyncio.to_thread(self._delete, file_id)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def sweep(self, max_age_seconds: float, now: float) -> int:
        return await asyncio.to_thread(self._sweep, max_age_seconds, now)

    async def total_size(self) -> int:
        return await asyncio.to_thread(self._total_size)


class MediaCache:
    """Cache for downloaded media keyed by file id.

    ``get`` checks memory, then disk. A disk hit is promoted to memory with its
    original timestamp. ``put`` must be called from a running event loop: the
    disk write runs as a tracked background task.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        memory_limit_bytes: int,
        max_age_seconds: float,
        sweep_delay_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.memory = MemoryTier(memory_limit_bytes)
        self.disk = DiskTier(directory)
        self.max_age_seconds = max_age_seconds
        self.sweep_delay_seconds = sweep_delay_seconds
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()
        self._writes: Dict[str, asyncio.Task] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings) -> "MediaCache":
        return cls(
            settings.MEDIA_CACHE_DIR,
            memory_limit_bytes=settings.media_cache_memory_bytes,
            max_age_seconds=settings.MEDIA_CACHE_MAX_AGE_SECONDS,
            sweep_delay_seconds=settings.MEDIA_CACHE_SWEEP_DELAY_SECONDS,
        )

    def _is_stale(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp > self.max_age_seconds

    def _schedule_sweep(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._delayed_sweep(), name="media-cache-sweep")

    async def _delayed_sweep(self) -> None:
        await asyncio.sleep(self.sweep_delay_seconds)
        try:
            removed = await self.disk.sweep(self.max_age_seconds, self._clock())
            if removed:
                logger.info("Expired media cache entries removed", extra={"removed": removed})
        except OSError as e:
            logger.warning("Media cache sweep failed", extra={"error": str(e)})

    async def get(self, file_id: str) -> Optional[bytes]:
        self._schedule_sweep()

        entry = self.memory.get(file_id)
        if entry is not None:
            if not self._is_stale(entry):
                return entry.data
            self.memory.remove(file_id)

        try:
            entry = await self.disk.read(file_id)
        except OSError as e:
            logger.debug("Media cache read failed", extra={"file_id": file_id, "error": str(e)})
            return None
        if entry is None:
            return None

        if self._is_stale(entry):
            try:
                await self.disk.delete(file_id)
            except OSError as e:
                logger.debug("Media cache delete failed", extra={"file_id": file_id, "error": str(e)})
            return None

        if entry.size < self.memory.limit_bytes:
            self.memory.put(entry)
        return entry.data

    def put(self, file_id: str, data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        self._schedule_sweep()

        entry = CacheEntry(
            file_id=file_id,
            data=data,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            timestamp=self._clock(),
        )
        if entry.size < self.memory.limit_bytes / 2:
            self.memory.put(entry)

        previous = self._writes.get(file_id)
        task = asyncio.create_task(
            self._write_after(previous, entry), name=f"media-cache-write-{file_id}"
        )
        self._writes[file_id] = task
        self._pending.add(task)
        task.add_done_callback(partial(self._on_write_done, file_id))

    async def _write_after(self, previous: Optional[asyncio.Task], entry: CacheEntry) -> None:
        # Writes for one key land in call order
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        await self.disk.write(entry)

    def _on_write_done(self, file_id: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._writes.get(file_id) is task:
            del self._writes[file_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Media cache write failed", extra={"error": str(error)})

    async def flush(self) -> None:
        """Wait for every pending durable write to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def delete(self, file_id: str) -> None:
        await self.flush()
        self.memory.remove(file_id)
        try:
            await self.disk.delete(file_id)
        except OSError as e:
            logger.debug("Media cache delete failed", extra={"file_id": file_id, "error": str(e)})

    async def clear(self) -> None:
        await self.flush()
        self.memory.clear()
        try:
            await self.disk.clear()
        except OSError as e:
            logger.warning("Media cache clear failed", extra={"error": str(e)})

    async def approximate_size(self) -> int:
        """Memory-tier bytes plus the sizes recorded in durable sidecars.

        Entries held in both tiers are counted twice.
        """
        try:
            durable = await self.disk.total_size()
        except OSError:
            durable = 0
        return self.memory.size_bytes + durable

    async def aclose(self) -> None:
        await self.flush()
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
