import asyncio
import hashlib
import logging
import time
from typing import Awaitable, Callable, Dict, Protocol, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def norm(s: str) -> str:
    return " ".join((s or "").split()).lower()


def hash_key(prefix: str, text: str) -> str:
    digest = hashlib.sha256(norm(text).encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


class CacheStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisCacheStore:
    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryCacheStore:
    """Process-local store with per-key expiry. `clock` is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        self._data.clear()


class SingleFlight:
    """
    Collapses concurrent loads of the same key into one call.
    Callers arriving while a load is in flight await the same task.
    """

    def __init__(self):
        self._inflight: Dict[str, asyncio.Task] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable]):
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        # shield: one cancelled waiter must not cancel the load for the others
        return await asyncio.shield(task)

    def __len__(self):
        return len(self._inflight)


class TTLCache:
    """
    Read-through cache in front of a CacheStore. Loaders return a string to
    store or None for a miss; misses are never written so they can be retried.
    """

    def __init__(self, store: CacheStore, ttl_seconds: int):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._flight = SingleFlight()

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[str | None]]) -> str | None:
        cached = await self._safe_get(key)
        if cached is not None:
            return cached

        async def _load():
            # a concurrent flight may have filled the key while we waited
            again = await self._safe_get(key)
            if again is not None:
                return again
            value = await loader()
            if value is not None:
                await self._safe_set(key, value)
            return value

        return await self._flight.do(key, _load)

    async def invalidate(self, key: str) -> None:
        await self.store.delete(key)

    async def _safe_get(self, key: str) -> str | None:
        try:
            return await self.store.get(key)
        except Exception as e:
            # an unreachable cache degrades to uncached lookups
            logger.warning("cache read failed for %s: %s", key, e)
            return None

    async def _safe_set(self, key: str, value: str) -> None:
        try:
            await self.store.set(key, value, self.ttl_seconds)
        except Exception as e:
            logger.warning("cache write failed for %s: %s", key, e)
