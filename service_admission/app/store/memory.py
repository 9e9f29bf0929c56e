"""
In-memory counter store for tests and local development.

Every operation completes without yielding to the event loop, so each call
is atomic with respect to other coroutines just like a Redis command.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .base import WindowCount


@dataclass
class _Entry:
    value: str
    expires_at: Optional[float] = None


class InMemoryCounterStore:
    """Dictionary-backed stand-in for the Redis counter store."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._entries: Dict[str, _Entry] = {}
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def ping(self) -> bool:
        return True

    async def increment(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            entry = self._entries[key] = _Entry(value="0")
        entry.value = str(int(entry.value) + 1)
        return int(entry.value)

    async def expire(self, key: str, seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        entry.expires_at = self._clock() + seconds
        return True

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = _Entry(value=str(value), expires_at=expires_at)

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live(key)
        if entry is None or entry.expires_at is None:
            return None
        return max(0, math.ceil(entry.expires_at - self._clock()))

    async def increment_within_limit(self, key: str, limit: int, window_seconds: int) -> WindowCount:
        entry = self._live(key)
        current = int(entry.value) if entry else 0
        if entry is not None and entry.expires_at is None:
            entry.expires_at = self._clock() + window_seconds
        if current >= limit:
            return WindowCount(count=current, ttl=await self.ttl(key), admitted=False)
        count = await self.increment(key)
        if count == 1:
            await self.expire(key, window_seconds)
        return WindowCount(count=count, ttl=await self.ttl(key), admitted=True)

    def clear(self) -> None:
        self._entries.clear()

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry
