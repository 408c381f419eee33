"""Local filesystem chunk store."""

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from sftpdrop.storage.base import ChunkStore, chunk_key, is_chunk_key

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp-"


class LocalChunkStore(ChunkStore):
    """One file per chunk under a temp directory.

    Writes go to a sibling temp file and are moved into place with
    ``os.replace``, so a reader never sees a half-written chunk.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def _path(self, upload_id: str, chunk_index: int) -> Path:
        return self.base_path / chunk_key(upload_id, chunk_index)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    @staticmethod
    def _read(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def _sweep(self, max_age_seconds: float) -> int:
        if not self.base_path.exists():
            return 0
        now = time.time()
        removed = 0
        for entry in os.scandir(self.base_path):
            if not entry.is_file():
                continue
            # Temp files left behind by an interrupted write age out too
            if not (is_chunk_key(entry.name) or entry.name.startswith(TEMP_PREFIX)):
                continue
            try:
                age = now - entry.stat().st_mtime
                if age > max_age_seconds:
                    os.unlink(entry.path)
                    removed += 1
                    logger.debug("Removed expired chunk", extra={"chunk": entry.name})
            except FileNotFoundError:
                # Purged concurrently by a finalizer
                continue
        return removed

    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        await asyncio.to_thread(self._write, self._path(upload_id, chunk_index), bytes(data))

    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, self._path(upload_id, chunk_index))

    async def delete_all(self, upload_id: str, total_chunks: int) -> int:
        paths = [self._path(upload_id, index) for index in range(total_chunks)]

        def _delete() -> int:
            return sum(1 for path in paths if self._unlink(path))

        return await asyncio.to_thread(_delete)

    async def sweep_expired(self, max_age_seconds: float) -> int:
        removed = await asyncio.to_thread(self._sweep, max_age_seconds)
        if removed:
            logger.info("Swept expired chunks", extra={"removed": removed, "backend": "local"})
        return removed

    def get_backend_name(self) -> str:
        return "local"
