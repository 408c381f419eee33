"""Key-value store abstraction with optional per-key TTL."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class KVEntry:
    """Stored value plus its bookkeeping timestamps."""

    value: Any
    written_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class KeyValueStore(ABC):
    """Abstract per-key store used for chunk bytes and rate-limit windows."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns False if it was not present."""
        pass

    @abstractmethod
    async def items(self, prefix: str = "") -> List[Tuple[str, KVEntry]]:
        """Snapshot of live entries whose key starts with ``prefix``."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Expired entries are dropped lazily on access."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, KVEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        now = self._clock()
        expires_at = now + ttl_seconds if ttl_seconds is not None else None
        self._entries[key] = KVEntry(value=value, written_at=now, expires_at=expires_at)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def items(self, prefix: str = "") -> List[Tuple[str, KVEntry]]:
        now = self._clock()
        return [
            (key, entry)
            for key, entry in list(self._entries.items())
            if key.startswith(prefix) and not entry.is_expired(now)
        ]

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in list(self._entries.items()) if entry.is_expired(now)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
