"""
Tests for the cache stores (memory, Redis-backed, layered).
"""
import unittest
import sys
import os
import json
from unittest.mock import AsyncMock, MagicMock

# Add the parent directory to the path so we can import the application modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from redis.exceptions import ConnectionError as RedisConnectionError

from cache_store import (LayeredCacheStore, MemoryCacheStore, RedisCacheStore,
                         create_cache_store)


def make_redis_client(data=None):
    """AsyncMock stand-in for redis.asyncio.Redis backed by a dict."""
    data = {} if data is None else data
    client = MagicMock()

    async def _get(key):
        return data.get(key)

    async def _set(key, value, ex=None):
        data[key] = value
        return True

    async def _delete(*keys):
        return sum(1 for k in keys if data.pop(k, None) is not None)

    async def _scan_iter(match="*", count=None):
        prefix = match.rstrip("*")
        for key in list(data):
            if key.startswith(prefix):
                yield key

    client.get = AsyncMock(side_effect=_get)
    client.set = AsyncMock(side_effect=_set)
    client.delete = AsyncMock(side_effect=_delete)
    client.scan_iter = _scan_iter
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client, data


class TestMemoryCacheStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.now = 0.0
        self.store = MemoryCacheStore(maxsize=10, clock=lambda: self.now)

    async def test_set_get_delete(self):
        await self.store.set("k", {"a": 1}, ttl_seconds=60)
        self.assertEqual(await self.store.get("k"), {"a": 1})
        await self.store.delete("k")
        self.assertIsNone(await self.store.get("k"))

    async def test_false_survives_and_expires(self):
        await self.store.set("embed_ok:x", False, ttl_seconds=60)
        self.assertIs(await self.store.get("embed_ok:x"), False)
        self.now = 61
        self.assertIsNone(await self.store.get("embed_ok:x"))

    async def test_delete_prefix(self):
        await self.store.set("yt_videos:u:c:0:a", [1], 60)
        await self.store.set("yt_videos:u:c:1:b", [2], 60)
        await self.store.set("yt_videos:u:d:0:c", [3], 60)
        self.assertEqual(await self.store.delete_prefix("yt_videos:u:c:"), 2)
        self.assertEqual(await self.store.get("yt_videos:u:d:0:c"), [3])

    async def test_stats_name_backend(self):
        stats = await self.store.get_stats()
        self.assertEqual(stats["backend"], "memory")


class TestRedisCacheStore(unittest.IsolatedAsyncioTestCase):

    async def test_values_round_trip_as_json_with_expiry(self):
        client, data = make_redis_client()
        store = RedisCacheStore("redis://unused", client=client)

        await store.set("embed_ok:abc", True, ttl_seconds=86400)

        self.assertEqual(data["curator:embed_ok:abc"], "true")
        client.set.assert_awaited_once_with("curator:embed_ok:abc", "true", ex=86400)
        self.assertIs(await store.get("embed_ok:abc"), True)

    async def test_unreachable_redis_degrades_to_miss(self):
        client, _ = make_redis_client()
        client.get = AsyncMock(side_effect=RedisConnectionError("down"))
        store = RedisCacheStore("redis://unused", client=client, retry_interval=60)

        self.assertIsNone(await store.get("k"))
        self.assertFalse(store.available)

        # While unavailable, Redis is not contacted at all
        await store.set("k", 1, 60)
        self.assertIsNone(await store.get("k"))
        client.set.assert_not_awaited()
        self.assertEqual(client.get.await_count, 1)

    async def test_init_ping_failure_does_not_raise(self):
        client, _ = make_redis_client()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        store = RedisCacheStore("redis://unused", client=client)

        await store.init()

        self.assertFalse(store.available)
        stats = await store.get_stats()
        self.assertEqual(stats["errors"], 1)

    async def test_undecodable_entry_is_a_miss(self):
        client, data = make_redis_client({"curator:k": "{not json"})
        store = RedisCacheStore("redis://unused", client=client)
        self.assertIsNone(await store.get("k"))
        self.assertTrue(store.available)

    async def test_delete_prefix_uses_namespace(self):
        client, data = make_redis_client({
            "curator:yt_videos:u:c:0:a": "[]",
            "curator:yt_videos:u:c:1:b": "[]",
            "other:yt_videos:u:c:0:a": "[]",
        })
        store = RedisCacheStore("redis://unused", client=client)

        removed = await store.delete_prefix("yt_videos:u:c:")

        self.assertEqual(removed, 2)
        self.assertEqual(list(data), ["other:yt_videos:u:c:0:a"])


class TestLayeredCacheStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client, self.data = make_redis_client()
        self.local = MemoryCacheStore(maxsize=10)
        self.remote = RedisCacheStore("redis://unused", client=self.client)
        self.store = LayeredCacheStore(self.local, self.remote, backfill_ttl_seconds=30)

    async def test_writes_go_to_both_layers(self):
        await self.store.set("k", [1, 2], 60)
        self.assertEqual(await self.local.get("k"), [1, 2])
        self.assertEqual(json.loads(self.data["curator:k"]), [1, 2])

    async def test_remote_hit_repopulates_memory(self):
        self.data["curator:k"] = json.dumps({"v": 1})

        self.assertEqual(await self.store.get("k"), {"v": 1})
        self.assertEqual(await self.local.get("k"), {"v": 1})

        self.client.get.reset_mock()
        self.assertEqual(await self.store.get("k"), {"v": 1})
        self.client.get.assert_not_awaited()

    async def test_memory_keeps_working_when_redis_is_down(self):
        self.client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        await self.store.set("k", "v", 60)
        self.assertEqual(await self.store.get("k"), "v")

    async def test_delete_prefix_both_layers(self):
        await self.store.set("p:1", 1, 60)
        await self.store.set("p:2", 2, 60)
        self.assertEqual(await self.store.delete_prefix("p:"), 2)
        self.assertIsNone(await self.store.get("p:1"))


class TestCreateCacheStore(unittest.TestCase):

    def test_memory_without_redis_url(self):
        self.assertIsInstance(create_cache_store(""), MemoryCacheStore)

    def test_layered_with_redis_url(self):
        store = create_cache_store("redis://localhost:6379/0")
        self.assertIsInstance(store, LayeredCacheStore)

    def test_url_without_scheme_falls_back_to_memory(self):
        with self.assertLogs("cache_store", level="ERROR") as logs:
            store = create_cache_store("localhost:6379")
        self.assertIsInstance(store, MemoryCacheStore)
        self.assertTrue(any("Invalid REDIS_URL" in line for line in logs.output))


if __name__ == '__main__':
    unittest.main()
