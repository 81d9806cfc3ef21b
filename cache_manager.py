#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Cache Manager for the video curator.

Keeps a registry of the named cache stores (embed probe results, curated
result lists) and of @lru_cache helper functions so they can be cleared
and inspected from one place.
"""

import asyncio
from typing import Any, Callable, Dict

from cache_store import CacheStore
from logging_config import StructuredLogger

logger = StructuredLogger(__name__)


class CacheManager:
    """Registry for the application's caches."""

    def __init__(self):
        self._stores: Dict[str, CacheStore] = {}
        self._func_caches: Dict[str, Callable] = {}
        self._lock = asyncio.Lock()

    async def register_store(self, name: str, store: CacheStore) -> None:
        """Register a cache store under a unique name, replacing any previous one."""
        async with self._lock:
            self._stores[name] = store
            logger.debug(f"Registered cache store: {name}", backend=store.backend)

    async def unregister_store(self, name: str) -> None:
        async with self._lock:
            self._stores.pop(name, None)

    def register_func_cache(self, name: str, func: Callable) -> None:
        """Register a function decorated with @lru_cache."""
        if hasattr(func, "cache_clear"):
            self._func_caches[name] = func
            logger.debug(f"Registered function cache: {name}")
        else:
            logger.warning(f"Function {name} does not have cache_clear method, not registering")

    def get_store(self, name: str) -> CacheStore:
        """Return a registered store.

        Raises:
            ValueError: If no store is registered under name
        """
        try:
            return self._stores[name]
        except KeyError:
            raise ValueError(f"Cache {name} not found") from None

    async def clear_all_caches(self) -> Dict[str, Any]:
        """Clear every registered cache.

        Returns:
            dict: Entries removed per store, plus the number of function caches cleared
        """
        logger.info("Clearing all registered caches...")
        results: Dict[str, Any] = {}

        async with self._lock:
            stores = list(self._stores.items())
        for name, store in stores:
            results[f"store_{name}"] = await store.clear()

        for func in self._func_caches.values():
            func.cache_clear()
        results["function_caches_cleared"] = len(self._func_caches)

        logger.info("Cache clearing complete.", results=results)
        return results

    async def clear_cache_by_name(self, name: str) -> Any:
        """Clear one cache by name.

        Raises:
            ValueError: If the cache name is not found
        """
        if name in self._func_caches:
            self._func_caches[name].cache_clear()
            logger.info(f"Cleared function cache {name}")
            return "cleared"
        try:
            store = self.get_store(name)
        except ValueError:
            logger.warning(f"Cache {name} not found")
            raise
        count = await store.clear()
        logger.info(f"Cleared cache store {name}: {count} items removed")
        return count

    async def get_stats(self) -> Dict[str, Any]:
        """Statistics for all registered caches."""
        stats: Dict[str, Any] = {}
        async with self._lock:
            stores = list(self._stores.items())
        for name, store in stores:
            stats[f"store_{name}"] = await store.get_stats()

        for name, func in self._func_caches.items():
            info = func.cache_info()
            lookups = info.hits + info.misses
            stats[f"func_cache_{name}"] = {
                "hits": info.hits,
                "misses": info.misses,
                "maxsize": info.maxsize,
                "currsize": info.currsize,
                "hit_ratio": info.hits / lookups if lookups > 0 else 0,
            }
        return stats


# Create a singleton instance
cache_manager = CacheManager()
