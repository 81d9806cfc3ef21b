#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Data models for the video curator.

Contains the pydantic schema of the YouTube Data API bodies we consume, the
internal VideoMetadata record built from them, the public result models and
the request/response models of the HTTP API.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import config
from utils import normalize_query, short_hash

FALLBACK_TITLE = "No verified videos available for this module yet."
RESULT_CACHE_PREFIX = "yt_videos"
WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
LIVE_BROADCAST_STATES = {"live", "upcoming"}
SHORTS_MARKER = "#shorts"


# --- Upstream schema ---

def _as_text(v: Any) -> str:
    return v if isinstance(v, str) else ""


def _as_count(v: Any) -> int:
    """Counts arrive as strings ("1234"); anything unparseable or negative becomes 0."""
    try:
        count = int(v)
    except (TypeError, ValueError):
        return 0
    return count if count > 0 else 0


def _as_object(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _as_object_list(v: Any) -> List[Dict[str, Any]]:
    if not isinstance(v, list):
        return []
    return [item for item in v if isinstance(item, dict)]


class _UpstreamModel(BaseModel):
    """Lenient base: unknown fields ignored, camelCase aliases accepted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Thumbnail(_UpstreamModel):
    url: str = ""

    coerce_url = field_validator("url", mode="before")(_as_text)


class RegionRestriction(_UpstreamModel):
    allowed: List[str] = Field(default_factory=list)
    blocked: List[str] = Field(default_factory=list)

    @field_validator("allowed", "blocked", mode="before")
    @classmethod
    def upper_codes(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        return [c.upper() for c in v if isinstance(c, str)]

    def blocks(self, region_code: Optional[str]) -> bool:
        """Whether playback is restricted for region_code (or at all, if no region is set)."""
        if region_code is None:
            return bool(self.blocked)
        if region_code in self.blocked:
            return True
        return bool(self.allowed) and region_code not in self.allowed


class ContentRating(_UpstreamModel):
    yt_rating: str = Field("", alias="ytRating")

    coerce_rating = field_validator("yt_rating", mode="before")(_as_text)


class ContentDetails(_UpstreamModel):
    region_restriction: Optional[RegionRestriction] = Field(None, alias="regionRestriction")
    content_rating: ContentRating = Field(default_factory=ContentRating, alias="contentRating")

    @field_validator("region_restriction", mode="before")
    @classmethod
    def drop_non_object(cls, v: Any) -> Optional[Dict[str, Any]]:
        return v if isinstance(v, dict) else None

    coerce_content_rating = field_validator("content_rating", mode="before")(_as_object)


class VideoStatus(_UpstreamModel):
    privacy_status: str = Field("", alias="privacyStatus")
    embeddable: bool = False

    coerce_privacy = field_validator("privacy_status", mode="before")(_as_text)

    @field_validator("embeddable", mode="before")
    @classmethod
    def strict_true(cls, v: Any) -> bool:
        return v is True


class VideoStatistics(_UpstreamModel):
    view_count: int = Field(0, alias="viewCount")
    like_count: int = Field(0, alias="likeCount")

    coerce_counts = field_validator("view_count", "like_count", mode="before")(_as_count)


class VideoSnippet(_UpstreamModel):
    title: str = ""
    description: str = ""
    channel_title: str = Field("", alias="channelTitle")
    live_broadcast_content: str = Field("none", alias="liveBroadcastContent")
    thumbnails: Dict[str, Thumbnail] = Field(default_factory=dict)

    coerce_text = field_validator("title", "description", "channel_title", mode="before")(_as_text)

    @field_validator("live_broadcast_content", mode="before")
    @classmethod
    def normalize_broadcast(cls, v: Any) -> str:
        return v.lower() if isinstance(v, str) and v else "none"

    @field_validator("thumbnails", mode="before")
    @classmethod
    def object_thumbnails(cls, v: Any) -> Dict[str, Any]:
        if not isinstance(v, dict):
            return {}
        return {k: t for k, t in v.items() if isinstance(t, dict)}

    def best_thumbnail(self) -> str:
        for size in ("high", "medium", "default"):
            thumb = self.thumbnails.get(size)
            if thumb and thumb.url:
                return thumb.url
        return ""


class VideoItem(_UpstreamModel):
    """One resource of a videos.list response."""

    id: str = ""
    status: VideoStatus = Field(default_factory=VideoStatus)
    statistics: VideoStatistics = Field(default_factory=VideoStatistics)
    snippet: VideoSnippet = Field(default_factory=VideoSnippet)
    content_details: ContentDetails = Field(default_factory=ContentDetails, alias="contentDetails")

    coerce_id = field_validator("id", mode="before")(_as_text)
    coerce_parts = field_validator("status", "statistics", "snippet", "content_details", mode="before")(_as_object)


class VideoListResponse(_UpstreamModel):
    items: List[VideoItem] = Field(default_factory=list)

    coerce_items = field_validator("items", mode="before")(_as_object_list)


class SearchResultId(_UpstreamModel):
    kind: str = ""
    video_id: str = Field("", alias="videoId")

    coerce_text = field_validator("kind", "video_id", mode="before")(_as_text)


class SearchResultItem(_UpstreamModel):
    id: SearchResultId = Field(default_factory=SearchResultId)

    coerce_id = field_validator("id", mode="before")(_as_object)


class SearchListResponse(_UpstreamModel):
    items: List[SearchResultItem] = Field(default_factory=list)

    coerce_items = field_validator("items", mode="before")(_as_object_list)

    def video_ids(self, limit: Optional[int] = None) -> List[str]:
        """Unique, non-empty video ids in upstream (relevance) order."""
        seen = set()
        ids: List[str] = []
        for item in self.items:
            video_id = item.id.video_id
            if video_id and video_id not in seen:
                seen.add(video_id)
                ids.append(video_id)
                if limit is not None and len(ids) >= limit:
                    break
        return ids


# --- Internal video record ---

@dataclass
class VideoMetadata:
    """Display data and hard-rule flags for one video.

    Built for every item the videos.list call returns; the validator only
    passes on the ones whose flags satisfy every hard rule.
    """

    id: str
    title: str = ""
    description: str = field(default="", repr=False)
    channel_title: str = ""
    thumbnail_url: str = ""
    view_count: int = 0
    like_count: int = 0
    privacy_status: str = ""
    embeddable: bool = False
    region_blocked: bool = False
    is_live: bool = False
    looks_like_short: bool = False
    age_restricted: bool = False

    @classmethod
    def from_api_item(cls, item: VideoItem, region_code: Optional[str] = None) -> "VideoMetadata":
        snippet = item.snippet
        restriction = item.content_details.region_restriction
        return cls(
            id=item.id,
            title=snippet.title.strip(),
            description=snippet.description,
            channel_title=snippet.channel_title,
            thumbnail_url=snippet.best_thumbnail(),
            view_count=item.statistics.view_count,
            like_count=item.statistics.like_count,
            privacy_status=item.status.privacy_status,
            embeddable=item.status.embeddable,
            region_blocked=bool(restriction and restriction.blocks(region_code)),
            is_live=snippet.live_broadcast_content in LIVE_BROADCAST_STATES,
            looks_like_short=(SHORTS_MARKER in snippet.title.lower()
                              or SHORTS_MARKER in snippet.description.lower()),
            age_restricted=item.content_details.content_rating.yt_rating == "ytAgeRestricted",
        )

    @property
    def url(self) -> str:
        return WATCH_URL_TEMPLATE.format(video_id=self.id)

    @property
    def embed_url(self) -> str:
        return config.EMBED_URL_TEMPLATE.format(video_id=self.id)


# --- Results ---

class RankedVideoResult(BaseModel):
    """A curated, embed-verified video as returned to callers."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    url: str
    embed_url: str = Field(..., alias="embedUrl")
    channel_title: str = Field("", alias="channelTitle")
    views: int = 0
    likes: int = 0
    thumbnail: Optional[str] = None
    score: float = 0.0

    @property
    def is_fallback(self) -> bool:
        return False

    @classmethod
    def from_video(cls, video: VideoMetadata, score: float) -> "RankedVideoResult":
        return cls(
            title=video.title,
            url=video.url,
            embed_url=video.embed_url,
            channel_title=video.channel_title,
            views=video.view_count,
            likes=video.like_count,
            thumbnail=video.thumbnail_url or None,
            score=score,
        )


class FallbackResult(BaseModel):
    """Sentinel meaning "no safe videos found"; recognisable by url being None."""

    model_config = ConfigDict(frozen=True)

    title: str = FALLBACK_TITLE
    url: None = None

    @property
    def is_fallback(self) -> bool:
        return True


VideoResult = Union[RankedVideoResult, FallbackResult]


def fallback_results() -> List[FallbackResult]:
    return [FallbackResult()]


def to_public_dict(result: VideoResult) -> Dict[str, Any]:
    """JSON-ready dict using the camelCase field names callers expect."""
    return result.model_dump(by_alias=True)


@dataclass(frozen=True)
class CacheScope:
    """Isolation scope for cached pipeline results."""

    user_id: str = "anonymous"
    course_id: str = "default"
    module_index: int = 0

    @property
    def course_prefix(self) -> str:
        return f"{RESULT_CACHE_PREFIX}:{self.user_id}:{self.course_id}:"

    def result_cache_key(self, query: str) -> str:
        return f"{self.course_prefix}{self.module_index}:{short_hash(normalize_query(query))}"


@dataclass
class CurationResult:
    """Course/module-level outcome: the videos plus a status flag."""

    videos: List[RankedVideoResult] = field(default_factory=list)
    status: Literal["OK", "NO_SAFE_VIDEOS"] = "OK"
    cached: bool = False


# --- HTTP API models ---

class VideoRequest(BaseModel):
    """Body of POST /videos.

    Either `query` or `module_title` (optionally with `course_title`) must be given.
    """

    query: Optional[str] = Field(None, max_length=300, description="Free-text search query.")
    course_title: Optional[str] = Field(None, max_length=300, description="Course title used to build the query.")
    module_title: Optional[str] = Field(None, max_length=300, description="Module title used to build the query.")
    user_id: str = Field("anonymous", max_length=128, description="Verified user id used for cache isolation.")
    course_id: str = Field("default", max_length=128)
    module_index: int = Field(0, ge=0, le=1000)

    @field_validator("query", "course_title", "module_title", mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Optional[str]:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @property
    def scope(self) -> CacheScope:
        return CacheScope(user_id=self.user_id, course_id=self.course_id, module_index=self.module_index)


class VideoResponse(BaseModel):
    """Response of POST /videos."""

    videos: List[Dict[str, Any]] = Field(..., description="Ranked videos, or the single fallback sentinel.")
    status: Literal["OK", "NO_SAFE_VIDEOS"]
    cached: bool = False
    processing_time_ms: Optional[float] = Field(None, description="Server processing time in milliseconds.")


class ErrorResponse(BaseModel):
    """Model for error responses."""

    detail: str = Field(..., description="Detailed error message.")
    error_code: Optional[str] = Field(None, description="Optional internal error code.")
