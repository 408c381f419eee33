"""Fixed-window request rate limiting keyed by client address."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from sftpdrop.storage.kv import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Request count for the window ending at ``reset_at``."""

    count: int
    reset_at: float


class RateLimiter:
    """Counts requests per key in fixed windows.

    The first request for a key opens a window of ``window_seconds``; up to
    ``max_requests`` are allowed until it ends.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, clock: Callable[[], float] = time.time):
        self.store = store or InMemoryKeyValueStore(clock=clock)
        self._clock = clock

    async def allow(self, key: str, max_requests: int, window_seconds: float) -> bool:
        now = self._clock()
        window: Optional[RateWindow] = await self.store.get(key)

        if window is None or now > window.reset_at:
            await self.store.set(
                key, RateWindow(count=1, reset_at=now + window_seconds), ttl_seconds=window_seconds
            )
            return True

        if window.count >= max_requests:
            logger.info("Rate limit exceeded", extra={"key": key, "max_requests": max_requests})
            return False

        window.count += 1
        await self.store.set(key, window, ttl_seconds=max(window.reset_at - now, 0.0))
        return True


def client_address(request: Request) -> str:
    """Best-effort caller address, preferring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
