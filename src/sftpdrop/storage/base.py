"""Abstract chunk store interface."""

import re
from abc import ABC, abstractmethod
from typing import Optional

_UPLOAD_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_CHUNK_KEY_RE = re.compile(r"^(?P<upload_id>[0-9a-fA-F-]{36})_chunk_(?P<index>\d+)$")


def chunk_key(upload_id: str, chunk_index: int) -> str:
    """Build the storage key for one chunk.

    Raises:
        ValueError: If the upload id is not a canonical UUID or the index is negative
    """
    if not _UPLOAD_ID_RE.match(upload_id):
        raise ValueError(f"Invalid upload id: {upload_id!r}")
    if chunk_index < 0:
        raise ValueError(f"Invalid chunk index: {chunk_index}")
    return f"{upload_id}_chunk_{chunk_index}"


def is_chunk_key(name: str) -> bool:
    return _CHUNK_KEY_RE.match(name) is not None


class ChunkStore(ABC):
    """Holds chunk bytes between independent requests.

    Keys are ``(upload_id, chunk_index)``. ``put`` on an existing key replaces
    it atomically, which makes a client retry of the same chunk harmless.
    """

    @abstractmethod
    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        """Store chunk bytes under the composite key."""
        pass

    @abstractmethod
    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        """Return the chunk bytes, or None if the chunk was never stored."""
        pass

    @abstractmethod
    async def delete_all(self, upload_id: str, total_chunks: int) -> int:
        """Remove chunks ``0..total_chunks-1``. Missing chunks are not errors.

        Returns:
            Number of chunks actually removed
        """
        pass

    @abstractmethod
    async def sweep_expired(self, max_age_seconds: float) -> int:
        """Remove every chunk last written more than ``max_age_seconds`` ago.

        Returns:
            Number of chunks removed
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
