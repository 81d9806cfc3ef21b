#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Video Curation Engine.

Orchestrates the pipeline that turns a query into at most three safe,
embeddable videos: search ids, validate metadata, probe the first few
survivors' embed pages, rank by popularity. Any stage coming back empty
short-circuits to the fallback sentinel; the engine never raises to its
caller for upstream or internal failures.
"""

import asyncio
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from cache_manager import cache_manager
from cache_store import CacheStore, create_cache_store
from config import config
from logging_config import StructuredLogger
from models import (CacheScope, CurationResult, RankedVideoResult, VideoResult,
                    fallback_results)
from services.embed_probe import EmbedProber
from services.ranker import rank_videos
from services.validator import VideoValidator
from services.youtube_api import YouTubeAPIClient
from utils import normalize_query, performance_timer

logger = StructuredLogger(__name__)

RESULT_STORE_NAME = "curation"


def build_module_query(course_title: Optional[str], module_title: Optional[str]) -> str:
    """Query used for a course module: "<course> <module> tutorial"."""
    parts = [p.strip() for p in (course_title, module_title) if p and p.strip()]
    if not parts:
        return ""
    return " ".join(parts + ["tutorial"])


class VideoCurationEngine:
    """Orchestrator for safe video curation.

    Coordinates the YouTubeAPIClient (search), VideoValidator (metadata rules),
    EmbedProber (playability) and the ranker, and keeps a per-scope result
    cache in front of the whole pipeline.
    """

    def __init__(self, api_client: YouTubeAPIClient, cache: Optional[CacheStore] = None,
                 validator: Optional[VideoValidator] = None, prober: Optional[EmbedProber] = None,
                 probe_slice_size: int = config.PROBE_SLICE_SIZE,
                 deadline_seconds: Optional[float] = config.PIPELINE_DEADLINE_SECONDS):
        """Initialize the curation engine.

        Args:
            api_client: An instance of YouTubeAPIClient.
            cache: Store shared by the result cache and the embed probe cache.
            validator: Metadata validator; built around api_client if omitted.
            prober: Embed prober; built around cache if omitted.
            probe_slice_size: Maximum validated videos handed to the prober.
            deadline_seconds: Default upper bound for one run; None disables it.
        """
        if not isinstance(api_client, YouTubeAPIClient):
            raise TypeError("api_client must be an instance of YouTubeAPIClient")

        self.api_client = api_client
        self.cache = cache or create_cache_store()
        self.validator = validator or VideoValidator(api_client)
        self.prober = prober or EmbedProber(cache=self.cache)
        self.probe_slice_size = max(1, probe_slice_size)
        self.deadline_seconds = deadline_seconds

        self._global_stats = {
            "requests_processed": 0,
            "fallbacks_returned": 0,
            "result_cache_hits": 0,
            "total_processing_time_ms": 0.0,
            "engine_start_time": time.monotonic(),
        }
        logger.info("VideoCurationEngine initialized.", api_configured=api_client.is_configured)

    async def start(self) -> None:
        """Connect cache backings and register caches with the cache manager."""
        await self.cache.init()
        await cache_manager.register_store(RESULT_STORE_NAME, self.cache)
        if self.prober.cache is not self.cache:
            await cache_manager.register_store("embed_probe", self.prober.cache)
        cache_manager.register_func_cache("normalize_query", normalize_query)

    async def shutdown(self) -> None:
        """Close the probe HTTP client and cache connections."""
        logger.info("Shutting down VideoCurationEngine...")
        await self.prober.close()
        await self.cache.close()
        await cache_manager.unregister_store(RESULT_STORE_NAME)
        await cache_manager.unregister_store("embed_probe")
        logger.info("VideoCurationEngine shut down complete.")

    async def get_safe_videos(self, query: str, scope: Optional[CacheScope] = None,
                              deadline_seconds: Optional[float] = None) -> List[VideoResult]:
        """Curate videos for query.

        Returns:
            list: 1 to 3 RankedVideoResult objects in descending score order,
                  or exactly [FallbackResult] when nothing safe was found.
        """
        result = await self.curate(query, scope=scope, deadline_seconds=deadline_seconds)
        return list(result.videos) if result.videos else fallback_results()

    async def get_module_videos(self, course_title: Optional[str], module_title: Optional[str],
                                scope: Optional[CacheScope] = None,
                                deadline_seconds: Optional[float] = None) -> CurationResult:
        """Curate videos for a course module, with a status flag instead of the sentinel."""
        query = build_module_query(course_title, module_title)
        return await self.curate(query, scope=scope, deadline_seconds=deadline_seconds)

    async def curate(self, query: str, scope: Optional[CacheScope] = None,
                     deadline_seconds: Optional[float] = None) -> CurationResult:
        """Run the pipeline behind the result cache.

        Only non-empty results are cached. Cancellation of the calling task
        propagates (and cancels in-flight probes); every other failure,
        including the deadline passing, ends in NO_SAFE_VIDEOS.
        """
        start_time = time.monotonic()
        request_id = str(uuid.uuid4())[:8]
        log = logger.bind(request_id=request_id)
        self._global_stats["requests_processed"] += 1

        normalized = normalize_query(query or "")
        if not normalized:
            log.info("Empty query, nothing to curate.")
            return self._finish(CurationResult(status="NO_SAFE_VIDEOS"), start_time, log)

        log.info(f"Curating videos for '{normalized[:100]}'", query=normalized[:100],
                 scope=scope.course_prefix if scope else None)

        cache_key = scope.result_cache_key(query) if scope else None
        if cache_key:
            cached = await self._load_cached_results(cache_key, log)
            if cached:
                self._global_stats["result_cache_hits"] += 1
                return self._finish(CurationResult(videos=cached, cached=True), start_time, log)

        deadline = self.deadline_seconds if deadline_seconds is None else deadline_seconds
        try:
            if deadline:
                videos = await asyncio.wait_for(self._run_pipeline(query, log), timeout=deadline)
            else:
                videos = await self._run_pipeline(query, log)
        except asyncio.TimeoutError:
            log.warning(f"Curation exceeded its {deadline}s deadline; returning fallback.", deadline_seconds=deadline)
            videos = []
        except Exception as e:
            log.error(f"Unexpected error during curation, returning fallback: {e}", error_type=type(e).__name__)
            videos = []

        if not videos:
            return self._finish(CurationResult(status="NO_SAFE_VIDEOS"), start_time, log)

        if cache_key:
            await self.cache.set(cache_key, [v.model_dump() for v in videos], config.RESULT_CACHE_TTL_SECONDS)
        return self._finish(CurationResult(videos=videos), start_time, log)

    async def _run_pipeline(self, query: str, log: StructuredLogger) -> List[RankedVideoResult]:
        with performance_timer("stage_search", threshold_ms=1000):
            video_ids = await self.api_client.search_video_ids(query)
        if not video_ids:
            log.info("No candidates from search.", stage="search")
            return []

        with performance_timer("stage_validate", threshold_ms=1000):
            validated = await self.validator.validate(video_ids)
        if not validated:
            log.info("No candidates passed validation.", stage="validate", searched=len(video_ids))
            return []

        # Probing costs one page fetch per video; only the head of the list is worth it
        candidates = validated[:self.probe_slice_size]
        with performance_timer("stage_probe", threshold_ms=2000):
            playable = await self.prober.probe_many(candidates)
        if not playable:
            log.info("No candidates passed the embed probe.", stage="probe", probed=len(candidates))
            return []

        ranked = rank_videos(playable)
        log.info(f"Ranked {len(ranked)} video(s).", stage="rank", searched=len(video_ids),
                 validated=len(validated), playable=len(playable))
        return ranked

    async def _load_cached_results(self, cache_key: str, log: StructuredLogger) -> List[RankedVideoResult]:
        payload = await self.cache.get(cache_key)
        if not isinstance(payload, list) or not payload:
            return []
        try:
            return [RankedVideoResult.model_validate(item) for item in payload]
        except ValidationError as e:
            log.warning(f"Discarding unreadable cached result {cache_key}: {e}", key=cache_key)
            await self.cache.delete(cache_key)
            return []

    def _finish(self, result: CurationResult, start_time: float, log: StructuredLogger) -> CurationResult:
        duration_ms = (time.monotonic() - start_time) * 1000
        self._global_stats["total_processing_time_ms"] += duration_ms
        if not result.videos:
            self._global_stats["fallbacks_returned"] += 1
        log.info(f"Curation finished with status {result.status}", status=result.status,
                 count=len(result.videos), cached=result.cached, duration_ms=round(duration_ms, 2))
        return result

    async def invalidate_course_videos(self, user_id: str, course_id: str) -> int:
        """Drop every cached result of a course, e.g. after it was regenerated.

        Returns:
            int: Number of cache entries removed.
        """
        prefix = CacheScope(user_id=user_id, course_id=course_id).course_prefix
        removed = await self.cache.delete_prefix(prefix)
        logger.info(f"Invalidated {removed} cached result(s) for course {course_id}",
                    user_id=user_id, course_id=course_id, removed=removed)
        return removed

    async def get_global_stats(self) -> Dict[str, Any]:
        """Operational statistics: request counters, uptime, API usage and caches."""
        uptime = time.monotonic() - self._global_stats["engine_start_time"]
        total = self._global_stats["requests_processed"]
        return {
            "engine_uptime_seconds": round(uptime, 1),
            "total_requests_processed": total,
            "fallbacks_returned": self._global_stats["fallbacks_returned"],
            "result_cache_hits": self._global_stats["result_cache_hits"],
            "avg_processing_time_ms": round(self._global_stats["total_processing_time_ms"] / total, 2) if total else 0.0,
            "embed_probes_sent": self.prober.network_probes,
            "api_client_stats": self.api_client.get_api_stats(),
            "cache_stats": await cache_manager.get_stats(),
        }

    async def clear_caches(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Clear one registered cache by name, or all of them.

        Raises:
            ValueError: If name is given and no such cache is registered.
        """
        if name:
            logger.warning(f"Force clearing cache {name}...")
            return {name: await cache_manager.clear_cache_by_name(name)}
        logger.warning("Force clearing all caches...")
        return await cache_manager.clear_all_caches()
