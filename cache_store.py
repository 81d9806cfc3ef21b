#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Key/value cache stores with per-entry TTL for the video curator.

All stores share one async contract: get(key) returns the value or None on a
miss, set(key, value, ttl_seconds), delete(key), delete_prefix(prefix). A
stored False is a hit, distinct from a miss. The Redis-backed store never
raises to its caller: when Redis is unreachable it behaves as an empty cache.
"""

import json
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import config
from logging_config import StructuredLogger
from utils import LRUCache

logger = StructuredLogger(__name__)


class CacheStore:
    """Base class and interface for cache backings."""

    backend = "none"

    async def init(self) -> None:
        """Prepare the backing (connect, ping). Must not raise."""

    async def close(self) -> None:
        """Release connections held by the backing."""

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    async def clear(self) -> int:
        return await self.delete_prefix("")

    async def get_stats(self) -> Dict[str, Any]:
        return {"backend": self.backend}


class MemoryCacheStore(CacheStore):
    """In-process store backed by the asyncio-locked LRUCache."""

    backend = "memory"

    def __init__(self, maxsize: int = config.CACHE_MAX_ENTRIES, clock=time.monotonic):
        self._cache = LRUCache(maxsize=maxsize, clock=clock)

    async def get(self, key: str) -> Optional[Any]:
        return await self._cache.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        await self._cache.put(key, value, ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._cache.remove(key)

    async def delete_prefix(self, prefix: str) -> int:
        return await self._cache.remove_prefix(prefix)

    async def clear(self) -> int:
        return await self._cache.clear()

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self._cache.get_stats()
        stats["backend"] = self.backend
        return stats


class RedisCacheStore(CacheStore):
    """Networked store on redis.asyncio with JSON-encoded values.

    Keys are namespaced so clear() never touches foreign data. After a
    connection failure the store stays in "unavailable" mode for
    retry_interval seconds, answering every get with a miss and dropping
    writes, then tries Redis again.
    """

    backend = "redis"

    def __init__(self, url: str, namespace: str = "curator:",
                 socket_timeout: float = config.REDIS_SOCKET_TIMEOUT_SECONDS,
                 retry_interval: float = 30.0, client: Optional[redis.Redis] = None):
        self.url = url
        self.namespace = namespace
        self.retry_interval = retry_interval
        self._redis = client or redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._unavailable_until = 0.0
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    @property
    def available(self) -> bool:
        return time.monotonic() >= self._unavailable_until

    def _mark_unavailable(self, operation: str, error: Exception) -> None:
        self._stats["errors"] += 1
        if self.available:
            logger.warning(
                f"Redis cache unavailable during {operation}; degrading to no-op for {self.retry_interval}s",
                operation=operation,
                error=str(error)
            )
        self._unavailable_until = time.monotonic() + self.retry_interval

    async def init(self) -> None:
        try:
            await self._redis.ping()
            logger.info("Redis cache connected.", backend=self.backend)
        except (RedisError, OSError) as e:
            self._mark_unavailable("ping", e)

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Error closing Redis connection: {e}")

    async def get(self, key: str) -> Optional[Any]:
        if not self.available:
            self._stats["misses"] += 1
            return None
        try:
            raw = await self._redis.get(self._key(key))
        except (RedisError, OSError) as e:
            self._mark_unavailable("get", e)
            self._stats["misses"] += 1
            return None
        if raw is None:
            self._stats["misses"] += 1
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}", key=key)
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if not self.available:
            return
        try:
            await self._redis.set(self._key(key), json.dumps(value), ex=max(1, int(ttl_seconds)))
        except (RedisError, OSError) as e:
            self._mark_unavailable("set", e)

    async def delete(self, key: str) -> None:
        if not self.available:
            return
        try:
            await self._redis.delete(self._key(key))
        except (RedisError, OSError) as e:
            self._mark_unavailable("delete", e)

    async def delete_prefix(self, prefix: str) -> int:
        if not self.available:
            return 0
        removed = 0
        try:
            async for full_key in self._redis.scan_iter(match=f"{self._key(prefix)}*", count=200):
                removed += await self._redis.delete(full_key)
        except (RedisError, OSError) as e:
            self._mark_unavailable("delete_prefix", e)
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "backend": self.backend, "available": self.available}


class LayeredCacheStore(CacheStore):
    """Memory in front of a shared Redis store.

    Reads hit memory first; a Redis hit is copied into memory for at most
    backfill_ttl_seconds so the local copy cannot outlive the shared one by much.
    Writes and deletes go to both layers.
    """

    backend = "layered"

    def __init__(self, local: MemoryCacheStore, remote: RedisCacheStore,
                 backfill_ttl_seconds: float = 300.0):
        self.local = local
        self.remote = remote
        self.backfill_ttl_seconds = backfill_ttl_seconds

    async def init(self) -> None:
        await self.remote.init()

    async def close(self) -> None:
        await self.remote.close()

    async def get(self, key: str) -> Optional[Any]:
        value = await self.local.get(key)
        if value is not None:
            return value
        value = await self.remote.get(key)
        if value is not None:
            await self.local.set(key, value, self.backfill_ttl_seconds)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        await self.local.set(key, value, ttl_seconds)
        await self.remote.set(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.local.delete(key)
        await self.remote.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        local_count = await self.local.delete_prefix(prefix)
        remote_count = await self.remote.delete_prefix(prefix)
        return max(local_count, remote_count)

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "local": await self.local.get_stats(),
            "remote": await self.remote.get_stats(),
        }


def create_cache_store(redis_url: Optional[str] = None) -> CacheStore:
    """Layered memory+Redis store when a Redis URL is configured, memory otherwise."""
    url = config.REDIS_URL if redis_url is None else redis_url
    local = MemoryCacheStore()
    if not url:
        return local
    try:
        remote = RedisCacheStore(url)
    except ValueError as e:
        # redis.from_url rejects URLs without a redis://, rediss:// or unix:// scheme
        logger.error(f"Invalid REDIS_URL, using the in-memory cache only: {e}", exc_info=False)
        return local
    logger.info("Using layered memory + Redis cache store.")
    return LayeredCacheStore(local, remote)
