import json
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from cachetools import TTLCache
from redis.asyncio import from_url as redis_from_url

from disclosure.core.config import settings

log = logging.getLogger("cache")

@runtime_checkable
class CachePort(Protocol):
    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...
    async def invalidate(self, *keys: str) -> None: ...
    async def generation(self, key: str) -> int: ...
    async def close(self) -> None: ...


class MemoryCache(CachePort):
    """Process-local TTL cache. Values are stored as JSON so they behave like the redis backend."""

    def __init__(self, ttl: int = 30, maxsize: int = 4096, timer=None):
        self.ttl = ttl
        kwargs = {"timer": timer} if timer is not None else {}
        self._store: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, **kwargs)
        # bumped on invalidate; outlives entries so slow readers still see the bump
        self._generations: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl * 10, **kwargs)

    async def get(self, key: str) -> Any | None:
        raw = self._store.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        # TTLCache has a single ttl; per-call ttl is honoured by the redis backend only
        self._store[key] = json.dumps(value)

    async def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    async def generation(self, key: str) -> int:
        return self._generations.get(key, 0)

    async def close(self) -> None:
        self._store.clear()
        self._generations.clear()


class RedisCache(CachePort):
    def __init__(self, url: str, ttl: int = 30, namespace: str = "disclosure:cache:"):
        self.redis = redis_from_url(url, encoding="utf-8", decode_responses=True)
        self.ttl = ttl
        self.namespace = namespace

    async def get(self, key: str) -> Any | None:
        raw = await self.redis.get(self.namespace + key)
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        await self.redis.setex(self.namespace + key, ttl or self.ttl, json.dumps(value))

    async def invalidate(self, *keys: str) -> None:
        if not keys:
            return
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(*[self.namespace + k for k in keys])
            for k in keys:
                pipe.incr(self._generation_key(k))
                pipe.expire(self._generation_key(k), self.ttl * 10)
            await pipe.execute()

    def _generation_key(self, key: str) -> str:
        return self.namespace + "gen:" + key

    async def generation(self, key: str) -> int:
        raw = await self.redis.get(self._generation_key(key))
        return int(raw) if raw else 0

    async def close(self) -> None:
        await self.redis.aclose()


def build_cache() -> CachePort:
    if settings.CACHE_PROVIDER == "redis":
        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL not configured")
        return RedisCache(settings.REDIS_URL, ttl=settings.CACHE_TTL_SECONDS)
    return MemoryCache(ttl=settings.CACHE_TTL_SECONDS, maxsize=settings.CACHE_MAXSIZE)


async def get_or_fetch(cache: CachePort, key: str, fetch: Callable[[], Awaitable[Any]], ttl: int | None = None) -> Any:
    """Read-through helper. A broken cache never fails the call: reads fall back to the store.

    The value is only written back if the key was not invalidated while the
    store was being read, so a slow reader cannot re-cache pre-commit rows.
    """
    try:
        hit = await cache.get(key)
        if hit is not None:
            return hit
        seen = await cache.generation(key)
    except Exception as e:
        log.warning("cache read failed key=%s (%s); reading from store", key, e.__class__.__name__)
        seen = None

    value = await fetch()
    if seen is None:
        return value
    try:
        if await cache.generation(key) != seen:
            log.debug("cache key=%s invalidated during read; not caching", key)
            return value
        await cache.set(key, value, ttl)
    except Exception as e:
        log.warning("cache write failed key=%s (%s)", key, e.__class__.__name__)
    return value


async def invalidate(cache: CachePort, *keys: str) -> None:
    try:
        await cache.invalidate(*keys)
    except Exception as e:
        # stale entries still age out after CACHE_TTL_SECONDS
        log.error("cache invalidation failed keys=%s (%s)", list(keys), e.__class__.__name__)
