"""
Counter store adapters.

The gateway keeps no state of its own: RPM windows and the plan cache live
in an atomic key-value store shared by every process.
"""

from .base import CounterStore, CounterStoreError, WindowCount
from .memory import InMemoryCounterStore
from .redis_store import RedisCounterStore

__all__ = [
    "CounterStore",
    "CounterStoreError",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowCount",
]
