"""Key/value cache used for credentials and vendor response caching."""

import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

logger = logging.getLogger(__name__)


class CacheTTL:
    """Common cache lifetimes in seconds."""

    FIFTEEN_MINUTES = 15 * 60
    THIRTY_MINUTES = 30 * 60
    ONE_HOUR = 60 * 60
    TWENTY_FOUR_HOURS = 24 * 60 * 60


@runtime_checkable
class KeyValueCache(Protocol):
    """Protocol for cache backends. Values must be JSON-serializable."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisCache:
    """Redis-backed cache storing JSON values with an expiry."""

    def __init__(self, url: Optional[str] = None, client: Any = None):
        if client is None:
            import redis.asyncio as redis

            client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        self._client = client

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache. Backend failures read as a miss."""
        try:
            value = await self._client.get(key)
            if value:
                return json.loads(value)
        except Exception as e:
            logger.error("Cache get error for %s: %s", key, e)

        return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Set value in cache with expiration."""
        if ttl <= 0:
            return False

        try:
            await self._client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.error("Cache set error for %s: %s", key, e)
            return False

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except Exception as e:
            logger.error("Cache delete error for %s: %s", key, e)


class MemoryCache:
    """In-process cache with per-key expiry. Used in tests and single-worker setups."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if ttl <= 0:
            return False
        self._entries[key] = (self._clock() + ttl, json.dumps(value, default=str))
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


async def get_or_set(
    cache: KeyValueCache,
    key: str,
    ttl: int,
    factory: Callable[[], Awaitable[Any]],
) -> Any:
    """Return the cached value for ``key``, computing and storing it on a miss."""
    cached = await cache.get(key)
    if cached is not None:
        return cached

    value = await factory()
    if value is not None:
        await cache.set(key, value, ttl)
    return value


def create_cache(redis_url: Optional[str]) -> KeyValueCache:
    """Build the cache backend for a Redis URL, or an in-memory cache when unset."""
    if redis_url:
        return RedisCache(redis_url)
    return MemoryCache()
