"""
Counter store contract shared by the Redis adapter and the in-memory fake.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from shared.errors import ServiceError


class CounterStoreError(ServiceError):
    """Transport failure talking to the counter store (timeouts included)."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            f"Counter store {operation} failed: {message}",
            details={"operation": operation},
            code="COUNTER_STORE_ERROR",
        )


@dataclass(frozen=True)
class WindowCount:
    """Observed state of a fixed-window counter after an admission attempt."""
    count: int
    ttl: Optional[int]
    admitted: bool


class CounterStore(Protocol):
    """Atomic key-value store used for RPM windows and the plan cache."""

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def increment(self, key: str) -> int:
        ...

    async def expire(self, key: str, seconds: int) -> bool:
        ...

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    async def ttl(self, key: str) -> Optional[int]:
        ...

    async def increment_within_limit(self, key: str, limit: int, window_seconds: int) -> WindowCount:
        """Increment ``key`` only while it is below ``limit``.

        The window expiry is set when the counter is created. Check and
        increment happen as one atomic step inside the store.
        """
        ...
