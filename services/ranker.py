#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Popularity ranking of verified videos."""

from typing import List

from config import config
from models import RankedVideoResult, VideoMetadata


def score_video(video: VideoMetadata, weight_views: float = config.RANK_WEIGHT_VIEWS,
                weight_likes: float = config.RANK_WEIGHT_LIKES) -> float:
    return video.view_count * weight_views + video.like_count * weight_likes


def rank_videos(videos: List[VideoMetadata], weight_views: float = config.RANK_WEIGHT_VIEWS,
                weight_likes: float = config.RANK_WEIGHT_LIKES,
                top_n: int = config.RANK_TOP_N) -> List[RankedVideoResult]:
    """Score, sort descending and keep the top_n.

    The sort is stable, so equal scores keep their incoming (validator) order.
    """
    scored = [(score_video(v, weight_views, weight_likes), v) for v in videos]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [RankedVideoResult.from_video(v, score) for score, v in scored[:max(0, top_n)]]
