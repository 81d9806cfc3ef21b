"""
Tests for the video curation engine.
"""
import unittest
import sys
import os
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

# Add the parent directory to the path so we can import the application modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from cache_manager import cache_manager
from cache_store import MemoryCacheStore
from models import FALLBACK_TITLE, CacheScope, FallbackResult, RankedVideoResult
from services.embed_probe import EmbedProber
from services.engine import VideoCurationEngine, build_module_query
from services.validator import VideoValidator
from services.youtube_api import YouTubeAPIClient

from fixtures import mock_youtube_resource, search_response, video_item

PLAYER_PAGE = "<html><body><div id='player'></div></body></html>"


class EmbedPages:
    """MockTransport handler: every embed page plays unless its id is listed as broken."""

    def __init__(self, broken=()):
        self.broken = set(broken)
        self.probed = []

    def __call__(self, request):
        video_id = request.url.path.rsplit("/", 1)[-1]
        self.probed.append(video_id)
        if video_id in self.broken:
            return httpx.Response(200, text="<div class='error'>Video unavailable</div>")
        return httpx.Response(200, text=PLAYER_PAGE)


class TestBuildModuleQuery(unittest.TestCase):

    def test_query_format(self):
        self.assertEqual(build_module_query("Python Basics", "Loops"), "Python Basics Loops tutorial")
        self.assertEqual(build_module_query(None, " Loops "), "Loops tutorial")
        self.assertEqual(build_module_query("  ", None), "")


class TestVideoCurationEngine(unittest.IsolatedAsyncioTestCase):
    """End-to-end pipeline runs against mocked upstreams."""

    def make_engine(self, search_ids=(), items=(), broken=(), api_key="AIzaTestKey", **kwargs):
        if api_key:
            self.resource = mock_youtube_resource(search_body=search_response(*search_ids),
                                                  videos_body={"items": list(items)})
        else:
            self.resource = None
        self.api_client = YouTubeAPIClient(api_key=api_key, youtube=self.resource,
                                           min_delay_ms=0, max_delay_ms=0, max_retries=0)
        self.cache = MemoryCacheStore()
        self.pages = EmbedPages(broken)
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.pages))
        self.addAsyncCleanup(client.aclose)
        prober = EmbedProber(cache=self.cache, client=client)
        validator = VideoValidator(self.api_client, min_view_count=0, region_code="",
                                   diagnostic_mode=False)
        return VideoCurationEngine(self.api_client, cache=self.cache, validator=validator,
                                   prober=prober, **kwargs)

    def search_calls(self):
        return self.resource.search.return_value.list.return_value.execute.call_count

    def assert_fallback(self, results):
        self.assertEqual(len(results), 1)
        self.assertIsInstance(results[0], FallbackResult)
        self.assertEqual(results[0].model_dump(), {"title": FALLBACK_TITLE, "url": None})

    def test_requires_api_client(self):
        with self.assertRaises(TypeError):
            VideoCurationEngine(api_client=MagicMock())

    async def test_introduction_to_recursion(self):
        ids = [f"rec{i}" for i in range(10)]
        items = [
            video_item(vid, title=f"Recursion {i}", views=str((i + 1) * 1000), likes=str(i * 10),
                       embeddable=i not in (1, 4, 7))
            for i, vid in enumerate(ids)
        ]
        engine = self.make_engine(ids, items, broken={"rec8", "rec6"})

        results = await engine.get_safe_videos("introduction to recursion")

        # rec0,2,3,5,6,8,9 pass validation; rec6 and rec8 fail the probe
        self.assertEqual(sorted(self.pages.probed), ["rec0", "rec2", "rec3", "rec5", "rec6", "rec8", "rec9"])
        self.assertEqual([r.title for r in results], ["Recursion 9", "Recursion 5", "Recursion 3"])
        scores = [r.score for r in results]
        self.assertEqual(scores, sorted(scores, reverse=True))

    async def test_missing_key_makes_no_calls(self):
        with patch("services.youtube_api.build") as mock_build:
            engine = self.make_engine(api_key="")

        results = await engine.get_safe_videos("introduction to recursion")

        self.assert_fallback(results)
        mock_build.assert_not_called()
        self.assertEqual(self.api_client.api_calls_count, 0)
        self.assertEqual(self.pages.probed, [])

    async def test_all_probes_failing_gives_fallback(self):
        ids = [f"gone{i}" for i in range(10)]
        engine = self.make_engine(ids, [video_item(vid) for vid in ids], broken=ids)

        results = await engine.get_safe_videos("python decorators")

        self.assert_fallback(results)
        self.assertEqual(len(self.pages.probed), 8)

    async def test_probe_fan_out_is_bounded(self):
        ids = [f"v{i:02d}" for i in range(20)]
        engine = self.make_engine(ids, [video_item(vid) for vid in ids])

        await engine.get_safe_videos("python")

        self.assertEqual(len(self.pages.probed), 8)
        self.assertEqual(set(self.pages.probed), set(ids[:8]))

    async def test_empty_search_gives_fallback(self):
        engine = self.make_engine()
        self.assert_fallback(await engine.get_safe_videos("nothing matches this"))
        self.resource.videos.assert_not_called()

    async def test_empty_validation_gives_fallback(self):
        engine = self.make_engine(["a", "b"], [video_item("a", privacy="private"),
                                               video_item("b", live="live")])
        self.assert_fallback(await engine.get_safe_videos("python"))
        self.assertEqual(self.pages.probed, [])

    async def test_blank_query(self):
        engine = self.make_engine(["a"], [video_item("a")])
        self.assert_fallback(await engine.get_safe_videos("   "))
        self.assertEqual(self.search_calls(), 0)

    async def test_output_bounded_to_three(self):
        for count in (1, 2, 3, 6):
            with self.subTest(count=count):
                ids = [f"v{i}" for i in range(count)]
                engine = self.make_engine(ids, [video_item(vid) for vid in ids])
                results = await engine.get_safe_videos("python")
                self.assertEqual(len(results), min(count, 3))
                for result in results:
                    self.assertIsInstance(result, RankedVideoResult)
                    self.assertTrue(result.url.startswith("https://www.youtube.com/watch?v="))

    async def test_search_failure_gives_fallback(self):
        engine = self.make_engine(["a"], [video_item("a")])
        self.resource.search.return_value.list.return_value.execute.side_effect = OSError("reset")
        self.assert_fallback(await engine.get_safe_videos("python"))

    async def test_internal_error_gives_fallback(self):
        engine = self.make_engine(["a"], [video_item("a")])
        engine.validator = MagicMock()
        engine.validator.validate = AsyncMock(side_effect=RuntimeError("bug"))

        with self.assertLogs("services.engine", level="ERROR"):
            results = await engine.get_safe_videos("python")
        self.assert_fallback(results)

    async def test_deadline_gives_fallback(self):
        engine = self.make_engine(["a"], [video_item("a")])

        async def slow_probe(videos):
            await asyncio.sleep(5)
            return videos

        engine.prober.probe_many = slow_probe
        result = await engine.curate("python", deadline_seconds=0.05)

        self.assertEqual(result.status, "NO_SAFE_VIDEOS")
        self.assertEqual(result.videos, [])

    async def test_results_cached_per_scope(self):
        engine = self.make_engine(["a", "b"], [video_item("a"), video_item("b")])
        scope = CacheScope(user_id="u1", course_id="c1", module_index=2)

        first = await engine.curate("Python Loops", scope=scope)
        second = await engine.curate("  python   loops ", scope=scope)

        self.assertFalse(first.cached)
        self.assertTrue(second.cached)
        self.assertEqual(second.videos, first.videos)
        self.assertEqual(self.search_calls(), 1)

        other_user = await engine.curate("Python Loops", scope=CacheScope(user_id="u2", course_id="c1",
                                                                          module_index=2))
        self.assertFalse(other_user.cached)
        self.assertEqual(self.search_calls(), 2)

    async def test_without_scope_nothing_is_cached(self):
        engine = self.make_engine(["a"], [video_item("a")])
        await engine.curate("python")
        await engine.curate("python")
        self.assertEqual(self.search_calls(), 2)

    async def test_fallback_is_not_cached(self):
        engine = self.make_engine()
        scope = CacheScope(user_id="u1", course_id="c1")
        await engine.curate("python", scope=scope)
        await engine.curate("python", scope=scope)
        self.assertEqual(self.search_calls(), 2)

    async def test_unreadable_cache_entry_is_discarded(self):
        engine = self.make_engine(["a"], [video_item("a")])
        scope = CacheScope(user_id="u1", course_id="c1")
        await self.cache.set(scope.result_cache_key("python"), [{"bogus": True}], 60)

        result = await engine.curate("python", scope=scope)

        self.assertFalse(result.cached)
        self.assertEqual(len(result.videos), 1)
        self.assertEqual(self.search_calls(), 1)

    async def test_invalidate_course_videos(self):
        engine = self.make_engine(["a"], [video_item("a")])
        for scope in (CacheScope("u1", "c1", 0), CacheScope("u1", "c1", 1), CacheScope("u1", "c2", 0)):
            await engine.curate("python", scope=scope)

        removed = await engine.invalidate_course_videos("u1", "c1")

        self.assertEqual(removed, 2)
        self.assertFalse((await engine.curate("python", scope=CacheScope("u1", "c1", 0))).cached)
        self.assertTrue((await engine.curate("python", scope=CacheScope("u1", "c2", 0))).cached)

    async def test_get_module_videos(self):
        engine = self.make_engine(["a"], [video_item("a")])

        result = await engine.get_module_videos("Python Basics", "Loops")

        self.assertEqual(result.status, "OK")
        self.assertEqual(len(result.videos), 1)
        params = self.resource.search.return_value.list.call_args.kwargs
        self.assertEqual(params["q"], "Python Basics Loops tutorial")

    async def test_get_module_videos_without_titles(self):
        engine = self.make_engine(["a"], [video_item("a")])
        result = await engine.get_module_videos(None, "")
        self.assertEqual(result.status, "NO_SAFE_VIDEOS")
        self.assertEqual(self.search_calls(), 0)

    async def test_global_stats(self):
        engine = self.make_engine(["a"], [video_item("a")])
        await engine.get_safe_videos("python")
        await engine.get_safe_videos("")

        stats = await engine.get_global_stats()

        self.assertEqual(stats["total_requests_processed"], 2)
        self.assertEqual(stats["fallbacks_returned"], 1)
        self.assertEqual(stats["embed_probes_sent"], 1)
        self.assertEqual(stats["api_client_stats"]["api_calls_count"], 2)

    async def test_clear_named_cache(self):
        engine = self.make_engine(["a"], [video_item("a")])
        scope = CacheScope(user_id="u1", course_id="c1")
        await engine.curate("python", scope=scope)
        await engine.start()
        try:
            result = await engine.clear_caches("curation")
            self.assertGreaterEqual(result["curation"], 1)
            self.assertFalse((await engine.curate("python", scope=scope)).cached)
            with self.assertRaises(ValueError):
                await engine.clear_caches("no_such_cache")
        finally:
            await engine.shutdown()

    async def test_start_registers_and_shutdown_unregisters(self):
        engine = self.make_engine()
        await engine.start()
        try:
            self.assertIs(cache_manager.get_store("curation"), self.cache)
        finally:
            await engine.shutdown()
        with self.assertRaises(ValueError):
            cache_manager.get_store("curation")


if __name__ == '__main__':
    unittest.main()
