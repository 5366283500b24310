"""Redis connection and the ephemeral key/value store.

The transcoding job records its start time here and the delivery layer keeps
segment tokens here. Both only need put-with-TTL, get, has and delete, so they
depend on the small ``KeyValueStore`` protocol instead of a Redis client.
"""

import time
from typing import Callable, Optional, Protocol

import redis.asyncio as redis

from securehls.core.config import settings


class KeyValueStore(Protocol):
    """Key/value store with per-key TTL expiry."""

    async def put(self, key: str, value: str, ttl: int) -> None: ...

    async def add(self, key: str, value: str, ttl: int) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def has(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    """KeyValueStore backed by Redis (SET EX / SET NX EX)."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def put(self, key: str, value: str, ttl: int) -> None:
        await self.client.set(key, value, ex=ttl)

    async def add(self, key: str, value: str, ttl: int) -> bool:
        """Set key only when absent. Returns True if the key was created."""
        return bool(await self.client.set(key, value, ex=ttl, nx=True))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def has(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)


class InMemoryKeyValueStore:
    """Process-local KeyValueStore.

    Suitable for a single worker process and for tests. Expired keys are
    dropped when read and swept on every write, so segment tokens that are
    never fetched do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._purge_expired()
        self._data[key] = (value, self._clock() + ttl)

    async def add(self, key: str, value: str, ttl: int) -> bool:
        if self._live(key) is not None:
            return False
        await self.put(key, value, ttl)
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def has(self, key: str) -> bool:
        return self._live(key) is not None

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        """Evict everything."""
        self._data.clear()


redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_kv_store() -> KeyValueStore:
    """FastAPI dependency for the shared ephemeral store."""
    return RedisKeyValueStore(redis_client)
