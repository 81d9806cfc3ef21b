#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Embed playability probe.

The Data API's embeddable flag is not always truthful: some videos still
refuse to play in a third-party iframe. The prober fetches the public embed
page and looks for the error texts YouTube renders in place of the player.
Verdicts are cached per video id; network failures are not.
"""

import asyncio
from typing import List, Optional

import httpx

from cache_store import CacheStore, MemoryCacheStore
from config import config
from logging_config import StructuredLogger
from models import VideoMetadata

logger = StructuredLogger(__name__)

EMBED_CACHE_PREFIX = "embed_ok:"

# Texts the embed page shows instead of a playable player
EMBED_FAILURE_MARKERS = (
    "Video unavailable",
    "This video is unavailable",
    "This video is private",
    "Playback on other websites has been disabled",
    "Playback restricted",
    "Sign in to confirm your age",
    "Post-live processing",
    "This video has been removed",
    "This video is no longer available",
)
_FAILURE_MARKER_BYTES = tuple(m.encode("utf-8") for m in EMBED_FAILURE_MARKERS)
_MARKER_OVERLAP = max(len(m) for m in _FAILURE_MARKER_BYTES) - 1


def embed_cache_key(video_id: str) -> str:
    return f"{EMBED_CACHE_PREFIX}{video_id}"


class EmbedProber:
    """Checks that videos actually play when embedded.

    Args:
        cache: Store for verdicts; an in-memory store is created if omitted.
        client: httpx.AsyncClient to use; one is created (and owned) if omitted.
        concurrency: Maximum number of probes in flight in probe_many.
        ttl_seconds: How long a verdict stays authoritative.
        max_scan_bytes: Bytes of the embed page searched for failure markers.
    """

    def __init__(self, cache: Optional[CacheStore] = None, client: Optional[httpx.AsyncClient] = None,
                 concurrency: int = config.PROBE_CONCURRENCY,
                 ttl_seconds: float = config.EMBED_PROBE_TTL_SECONDS,
                 timeout_seconds: float = config.PROBE_TIMEOUT_SECONDS,
                 max_scan_bytes: int = config.EMBED_MAX_SCAN_BYTES):
        self.cache = cache or MemoryCacheStore()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={
                "User-Agent": config.EMBED_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
            timeout=timeout_seconds,
            follow_redirects=True,
        )
        self.concurrency = max(1, concurrency)
        self.ttl_seconds = ttl_seconds
        self.max_scan_bytes = max(1, max_scan_bytes)
        self.network_probes = 0

    async def probe(self, video_id: str) -> bool:
        """True if the embed page for video_id renders a playable player."""
        if not video_id:
            return False

        key = embed_cache_key(video_id)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug(f"Embed probe cache hit for {video_id}", video_id=video_id, playable=cached)
            return bool(cached)

        url = config.EMBED_URL_TEMPLATE.format(video_id=video_id)
        self.network_probes += 1
        try:
            async with self.client.stream("GET", url) as response:
                status_code = response.status_code
                playable = response.is_success and not await self._has_failure_marker(response)
        except httpx.HTTPError as e:
            # Transient; leave uncached so the next request probes again
            logger.warning(f"Embed probe failed for {video_id}: {type(e).__name__}",
                           stage="probe", video_id=video_id, error=str(e))
            return False

        await self.cache.set(key, playable, self.ttl_seconds)
        if not playable:
            logger.info(f"Video {video_id} is not playable when embedded",
                        stage="probe", video_id=video_id, status_code=status_code)
        return playable

    async def _has_failure_marker(self, response: httpx.Response) -> bool:
        """Scan at most max_scan_bytes of the body for a failure marker."""
        scanned = 0
        window = b""
        async for chunk in response.aiter_bytes():
            chunk = chunk[:self.max_scan_bytes - scanned]
            scanned += len(chunk)
            # Keep a tail so a marker split across chunks is still found
            window = window[-_MARKER_OVERLAP:] + chunk
            if any(marker in window for marker in _FAILURE_MARKER_BYTES):
                return True
            if scanned >= self.max_scan_bytes:
                break
        return False

    async def probe_many(self, videos: List[VideoMetadata]) -> List[VideoMetadata]:
        """Probe videos concurrently and return the playable ones in input order.

        Cancelling the caller cancels the probes still in flight.
        """
        if not videos:
            return []
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(video: VideoMetadata) -> bool:
            async with semaphore:
                return await self.probe(video.id)

        verdicts = await asyncio.gather(*(_bounded(v) for v in videos))
        playable = [v for v, ok in zip(videos, verdicts) if ok]
        logger.info(f"{len(playable)} of {len(videos)} video(s) passed the embed probe.",
                    stage="probe", count=len(playable))
        return playable

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
