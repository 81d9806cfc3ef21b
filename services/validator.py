#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Metadata validation stage.

Fetches full metadata for the searched ids in one videos.list request and
keeps only the videos that pass every hard rule. Rejections are logged with
their reasons unless the service runs in production.
"""

from collections import Counter
from typing import List, Optional

from pydantic import ValidationError

from config import config
from exceptions import DEGRADABLE_ERRORS, APIConfigurationError
from logging_config import StructuredLogger
from models import VideoItem, VideoMetadata
from services.youtube_api import YouTubeAPIClient

logger = StructuredLogger(__name__)

# Rejection reasons, in the order the rules are evaluated
REASON_NOT_PUBLIC = "not_public"
REASON_NOT_EMBEDDABLE = "not_embeddable"
REASON_REGION_BLOCKED = "region_blocked"
REASON_LIVE = "live_or_upcoming"
REASON_LOW_VIEWS = "low_view_count"
REASON_NO_TITLE = "missing_title"
REASON_SHORT = "shorts_marker"
REASON_AGE_RESTRICTED = "age_restricted"


def rejection_reasons(video: VideoMetadata, min_view_count: int = 0) -> List[str]:
    """Every hard rule the video fails, in evaluation order. Empty means valid."""
    reasons = []
    if video.privacy_status != "public":
        reasons.append(REASON_NOT_PUBLIC)
    if not video.embeddable:
        reasons.append(REASON_NOT_EMBEDDABLE)
    if video.region_blocked:
        reasons.append(REASON_REGION_BLOCKED)
    if video.is_live:
        reasons.append(REASON_LIVE)
    if video.view_count <= min_view_count:
        reasons.append(REASON_LOW_VIEWS)
    if not video.title:
        reasons.append(REASON_NO_TITLE)
    if video.looks_like_short:
        reasons.append(REASON_SHORT)
    if video.age_restricted:
        reasons.append(REASON_AGE_RESTRICTED)
    return reasons


class VideoValidator:
    """Filters candidate ids down to videos satisfying all hard rules."""

    def __init__(self, api_client: YouTubeAPIClient, min_view_count: Optional[int] = None,
                 region_code: Optional[str] = None, diagnostic_mode: Optional[bool] = None):
        self.api_client = api_client
        self.min_view_count = config.MIN_VIEW_COUNT if min_view_count is None else min_view_count
        self.region_code = config.region_code if region_code is None else (region_code.upper() or None)
        self.diagnostic_mode = config.diagnostic_mode if diagnostic_mode is None else diagnostic_mode

    async def validate(self, video_ids: List[str]) -> List[VideoMetadata]:
        """Return the valid videos among video_ids, in upstream order.

        Never raises for upstream problems: a failed or unparseable
        videos.list call yields an empty list.
        """
        if not video_ids:
            return []

        if len(video_ids) > config.BATCH_SIZE:
            logger.warning(
                f"Validator received {len(video_ids)} ids; only the first {config.BATCH_SIZE} are checked.",
                stage="validate",
                ignored=len(video_ids) - config.BATCH_SIZE
            )

        try:
            response = await self.api_client.fetch_video_items(video_ids)
        except APIConfigurationError:
            return []
        except (*DEGRADABLE_ERRORS, ValidationError) as e:
            logger.warning(f"Metadata fetch failed, no videos validated: {e}",
                           stage="validate", error_type=type(e).__name__)
            return []

        valid: List[VideoMetadata] = []
        breakdown: Counter = Counter()
        for item in response.items:
            video = self._to_metadata(item)
            if video is None:
                continue
            reasons = rejection_reasons(video, self.min_view_count)
            if not reasons:
                valid.append(video)
                continue
            breakdown[reasons[0]] += 1
            if self.diagnostic_mode:
                logger.debug(f"Rejected video {video.id}", stage="validate", video_id=video.id,
                             title=video.title[:80], reasons=reasons)

        if self.diagnostic_mode and breakdown:
            logger.info(
                f"Validation rejected {sum(breakdown.values())} of {len(response.items)} video(s).",
                stage="validate",
                rejections=dict(breakdown)
            )
        logger.info(f"Validated {len(valid)} video(s).", stage="validate", count=len(valid))
        return valid

    def _to_metadata(self, item: VideoItem) -> Optional[VideoMetadata]:
        if not item.id:
            return None
        return VideoMetadata.from_api_item(item, self.region_code)
