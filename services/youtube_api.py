#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
YouTube Data API v3 Client for the video curator.

Handles the two Data API calls the pipeline makes: a cheap id-only
search.list and a batched videos.list for metadata. Requests go through the
circuit breaker, bounded retry with backoff, per-attempt timeout and a small
randomised delay between calls.
"""

import asyncio
import functools
import random
import time
from typing import Any, Dict, List, Optional

import httplib2
from googleapiclient.discovery import Resource, build
from pydantic import ValidationError

from config import config
from exceptions import (DEGRADABLE_ERRORS, APIConfigurationError, CircuitOpenError,
                        MalformedResponseError, QuotaExceededError)
from logging_config import StructuredLogger
from models import SearchListResponse, VideoListResponse
from utils import CircuitBreaker, RetryableRequest, SecureApiKeyManager, performance_timer

logger = StructuredLogger(__name__)

SEARCH_FIELDS = "items(id(kind,videoId))"
VIDEO_PARTS = "snippet,status,statistics,contentDetails"
VIDEO_FIELDS = (
    "items(id,"
    "snippet(title,description,channelTitle,liveBroadcastContent,thumbnails),"
    "status(privacyStatus,embeddable),"
    "statistics(viewCount,likeCount),"
    "contentDetails(regionRestriction,contentRating))"
)


class YouTubeAPIClient:
    """Client for the YouTube Data API v3.

    A missing API key does not make construction fail: the client reports
    is_configured = False, logs one error and every call yields nothing
    without touching the network.
    """

    # API quota costs for the endpoints we call
    API_COST = {
        "videos.list": 1,
        "search.list": 100,
    }

    def __init__(self, api_key: Optional[str] = None, youtube: Optional[Resource] = None,
                 min_delay_ms: int = config.MIN_DELAY_MS, max_delay_ms: int = config.MAX_DELAY_MS,
                 max_retries: int = config.API_RETRY_ATTEMPTS,
                 timeout_seconds: float = config.API_TIMEOUT_SECONDS):
        """Initialize the YouTube API client.

        Args:
            api_key: YouTube Data API key. If None, SecureApiKeyManager resolves it
                (encrypted key first, then the plain environment variable).
            youtube: Prebuilt API resource (tests inject a mock here).
            min_delay_ms: Lower bound of the delay between consecutive calls.
            max_delay_ms: Upper bound of the delay between consecutive calls.
            max_retries: Retries after the first attempt for transient errors.
            timeout_seconds: Timeout for each attempt.
        """
        logger.info("Initializing YouTube API Client...")
        self.key_manager = SecureApiKeyManager(encrypted_key=config.API_KEY_ENCRYPTED or None)
        self.api_key = api_key if api_key is not None else self.key_manager.get_key()
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max(min_delay_ms, max_delay_ms)
        self.max_retries = max_retries
        self.timeout_seconds = timeout_seconds

        self.quota_reached = False
        self.circuit_breaker = CircuitBreaker(name="youtube_api")
        self._missing_key_logged = False
        self.youtube: Optional[Resource] = youtube

        self.api_calls_count = 0
        self.api_quota_used = 0
        self.last_request_time_ms = 0.0

        if self.youtube is None and self.api_key:
            if not self.key_manager.validate_key(self.api_key):
                logger.warning("API key format validation failed (heuristic check).")
            try:
                # cache_discovery=False prevents issues with stale discovery documents
                self.youtube = build("youtube", "v3", developerKey=self.api_key, cache_discovery=False)
                logger.debug("YouTube API Resource created successfully.")
            except Exception as e:
                logger.critical(f"Error initializing YouTube API client build: {e}", error=str(e))
                self.youtube = None
        elif self.youtube is None:
            self._log_missing_key()

        logger.info("YouTube API Client initialized.", configured=self.is_configured)

    @property
    def is_configured(self) -> bool:
        return self.youtube is not None

    def _log_missing_key(self) -> None:
        if not self._missing_key_logged:
            self._missing_key_logged = True
            logger.error(
                f"YouTube API key is missing; set {config.API_KEY_ENV_VAR}. Searches will return no results.",
                exc_info=False
            )

    def _require_resource(self) -> Resource:
        if self.youtube is None:
            self._log_missing_key()
            raise APIConfigurationError("YouTube API Key is not configured.")
        return self.youtube

    async def _wait_for_rate_limit(self) -> float:
        """Sleep so consecutive calls are spaced by a random MIN..MAX_DELAY_MS.

        Returns:
            float: The delay applied in milliseconds (0.0 if none was needed).
        """
        now_ms = time.monotonic() * 1000
        elapsed_ms = now_ms - self.last_request_time_ms
        required_delay_ms = random.uniform(self.min_delay_ms, self.max_delay_ms)

        actual_delay_ms = 0.0
        if elapsed_ms < required_delay_ms:
            actual_delay_ms = required_delay_ms - elapsed_ms
            await asyncio.sleep(actual_delay_ms / 1000.0)
            self.last_request_time_ms = now_ms + actual_delay_ms
            logger.debug(f"Applied API delay: {actual_delay_ms:.2f}ms")
        else:
            self.last_request_time_ms = now_ms

        return actual_delay_ms

    def _new_http(self) -> httplib2.Http:
        # httplib2.Http is not thread-safe; each executor call gets its own
        return httplib2.Http(timeout=self.timeout_seconds)

    async def _execute_api_call(self, api_request: Any, operation: str) -> Dict[str, Any]:
        """Executes the API call with circuit breaker, retry logic, and timeout.

        Returns:
            dict: The parsed JSON response from the API.

        Raises:
            QuotaExceededError: If API quota is exceeded (never retried).
            CircuitOpenError: If the breaker is open.
            MalformedResponseError: If the body is not a JSON object.
            UpstreamUnavailableError / TimeoutExceededError / RateLimitedError:
                On transport failures after retries.
        """
        await self._wait_for_rate_limit()

        max_retries = 0 if self.quota_reached else self.max_retries
        execute = functools.partial(api_request.execute, http=self._new_http())

        try:
            response = await self.circuit_breaker(
                RetryableRequest.execute_with_retry,
                execute,
                max_retries=max_retries,
                base_delay_ms=config.API_RETRY_BASE_DELAY_MS,
                timeout_seconds=self.timeout_seconds,
                operation_name=operation
            )
        except CircuitOpenError as e:
            logger.error(f"Circuit breaker open, preventing API call: {e}",
                         breaker_name="youtube_api", state="open", exc_info=False)
            raise
        except QuotaExceededError as qe:
            self.quota_reached = True
            logger.critical(f"YouTube API quota exceeded: {qe}", error=str(qe), exc_info=False)
            raise

        self.api_calls_count += 1
        self.api_quota_used += self.API_COST.get(operation, 1)
        if not isinstance(response, dict):
            raise MalformedResponseError(f"{operation} returned {type(response).__name__}, expected an object")
        return response

    def _search_params(self, query: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "part": "id",
            "q": query,
            "type": "video",
            "maxResults": config.SEARCH_MAX_RESULTS,
            "safeSearch": config.SAFE_SEARCH,
            "videoEmbeddable": "true",
            "fields": SEARCH_FIELDS,
        }
        if config.region_code:
            params["regionCode"] = config.region_code
        if config.RELEVANCE_LANGUAGE:
            params["relevanceLanguage"] = config.RELEVANCE_LANGUAGE
        if config.VIDEO_DURATION:
            params["videoDuration"] = config.VIDEO_DURATION
        return params

    async def search_video_ids(self, query: str) -> List[str]:
        """Search for embeddable, safe-search-filtered videos matching query.

        Returns:
            list: Up to SEARCH_MAX_RESULTS unique video ids in relevance order.
                  Empty on an empty query, a missing key or any upstream failure.
        """
        query = (query or "").strip()
        if not query:
            return []

        try:
            youtube = self._require_resource()
            with performance_timer("youtube_search", threshold_ms=1000):
                request = youtube.search().list(**self._search_params(query))
                response = await self._execute_api_call(request, "search.list")
            ids = SearchListResponse.model_validate(response).video_ids(limit=config.SEARCH_MAX_RESULTS)
        except APIConfigurationError:
            return []
        except (*DEGRADABLE_ERRORS, ValidationError) as e:
            logger.warning(f"Search failed, returning no candidates: {e}",
                           stage="search", query=query, error_type=type(e).__name__)
            return []

        logger.info(f"Search returned {len(ids)} candidate(s).", stage="search", query=query, count=len(ids))
        return ids

    async def fetch_video_items(self, video_ids: List[str]) -> VideoListResponse:
        """Fetch snippet, status, statistics and contentDetails for up to BATCH_SIZE ids.

        Raises:
            APIConfigurationError: If no API key is configured.
            Propagates exceptions from _execute_api_call.
        """
        youtube = self._require_resource()
        batch_ids = video_ids[:config.BATCH_SIZE]
        with performance_timer("youtube_videos_list", threshold_ms=1000):
            request = youtube.videos().list(
                part=VIDEO_PARTS,
                id=",".join(batch_ids),
                fields=VIDEO_FIELDS,
                maxResults=len(batch_ids)
            )
            response = await self._execute_api_call(request, "videos.list")
        return VideoListResponse.model_validate(response)

    def get_api_stats(self) -> Dict[str, Any]:
        """API usage statistics and circuit breaker state."""
        return {
            "configured": self.is_configured,
            "api_calls_count": self.api_calls_count,
            "api_quota_used_estimated": self.api_quota_used,
            "quota_reached_flag": self.quota_reached,
            "circuit_breaker": self.circuit_breaker.get_stats(),
            "api_key_info": {
                "available": bool(self.api_key),
                "obfuscated": self.key_manager.obfuscate_key(self.api_key),
            },
        }
