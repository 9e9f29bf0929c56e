"""
Redis-backed counter store.
"""

import asyncio
from typing import Any, Awaitable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from .base import CounterStoreError, WindowCount

# KEYS[1] counter key; ARGV[1] ceiling; ARGV[2] window seconds.
# Returns {count, ttl, admitted}. Counters left without an expiry are repaired.
_LUA_INCREMENT_WITHIN_LIMIT = r"""
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local current = tonumber(redis.call('GET', key) or '0')
if current > 0 and redis.call('TTL', key) == -1 then
  redis.call('EXPIRE', key, window)
end
if current >= limit then
  return {current, redis.call('TTL', key), 0}
end
local count = redis.call('INCR', key)
if count == 1 then
  redis.call('EXPIRE', key, window)
end
return {count, redis.call('TTL', key), 1}
"""


class RedisCounterStore:
    """Counter store adapter over ``redis.asyncio``."""

    def __init__(self, redis_url: str, timeout_seconds: float = 2.0):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger("admission.store.redis")
        self.redis: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Open the connection pool and verify reachability."""
        if self.redis is not None:
            return
        self.redis = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.timeout_seconds,
            socket_timeout=self.timeout_seconds,
            health_check_interval=30,
        )
        await self._guard("ping", self.redis.ping())
        self.logger.info("Redis counter store connected")

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis counter store closed")

    async def ping(self) -> bool:
        try:
            return bool(await self._guard("ping", self._client().ping()))
        except CounterStoreError:
            return False

    async def increment(self, key: str) -> int:
        return int(await self._guard("increment", self._client().incr(key)))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._guard("expire", self._client().expire(key, seconds)))

    async def get(self, key: str) -> Optional[str]:
        return await self._guard("get", self._client().get(key))

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self._guard("set", self._client().set(key, value, ex=ttl_seconds))

    async def ttl(self, key: str) -> Optional[int]:
        remaining = await self._guard("ttl", self._client().ttl(key))
        return int(remaining) if remaining is not None and remaining >= 0 else None

    async def increment_within_limit(self, key: str, limit: int, window_seconds: int) -> WindowCount:
        count, ttl, admitted = await self._guard(
            "increment_within_limit",
            self._client().eval(_LUA_INCREMENT_WITHIN_LIMIT, 1, key, int(limit), int(window_seconds)),
        )
        ttl = int(ttl)
        return WindowCount(count=int(count), ttl=ttl if ttl >= 0 else None, admitted=bool(int(admitted)))

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CounterStoreError("connect", "store is not connected")
        return self.redis

    async def _guard(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self.logger.error("Counter store operation failed", operation=operation, error=str(e))
            raise CounterStoreError(operation, str(e) or e.__class__.__name__) from e
