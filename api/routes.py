#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
API Routes for the video curator using FastAPI.

Defines the curation endpoint, course cache invalidation, health check and
cache clearing.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from api.dependencies import get_api_client, get_curation_engine
from exceptions import InvalidInputError, ResourceNotFoundError, handle_exception
from logging_config import StructuredLogger
from models import ErrorResponse, FallbackResult, VideoRequest, VideoResponse, to_public_dict
from services.engine import VideoCurationEngine
from services.youtube_api import YouTubeAPIClient

# Import version directly from root __init__.py
from __init__ import __version__ as app_version

logger = StructuredLogger(__name__)

router = APIRouter()

# Common error responses for OpenAPI documentation
ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid input parameters"},
    413: {"model": ErrorResponse, "description": "Request entity too large"},
    404: {"model": ErrorResponse, "description": "Named cache not found"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
    503: {"model": ErrorResponse, "description": "Service unavailable (initialization failed)"}
}


@router.post(
    "/videos",
    response_model=VideoResponse,
    responses=ERROR_RESPONSES,
    summary="Curate safe videos",
    description="Returns up to three safe, embeddable, popularity-ranked YouTube videos for a query or a course module."
)
async def curate_videos(
    request: VideoRequest,
    engine: VideoCurationEngine = Depends(get_curation_engine)
):
    """Curate videos for a free-text query or for a course module.

    An empty result is not an error: the response then carries status
    NO_SAFE_VIDEOS and the single fallback entry.
    """
    start_time = time.monotonic()
    try:
        if request.query:
            logger.info("Received /videos request", query=request.query[:100])
            result = await engine.curate(request.query, scope=request.scope)
        elif request.module_title or request.course_title:
            logger.info("Received /videos request for module",
                        course_title=(request.course_title or "")[:100],
                        module_title=(request.module_title or "")[:100])
            result = await engine.get_module_videos(request.course_title, request.module_title,
                                                    scope=request.scope)
        else:
            raise InvalidInputError("Provide a non-empty 'query' or 'module_title'.")
    except Exception as e:
        if isinstance(e, (HTTPException, InvalidInputError)):
            logger.warning(f"Rejected /videos request: {e}")
        else:
            logger.critical(f"Unexpected error processing /videos: {e}")
        raise handle_exception(e)

    videos = [to_public_dict(v) for v in result.videos] or [to_public_dict(FallbackResult())]
    return VideoResponse(
        videos=videos,
        status=result.status,
        cached=result.cached,
        processing_time_ms=round((time.monotonic() - start_time) * 1000, 2)
    )


@router.delete(
    "/videos/cache/{user_id}/{course_id}",
    summary="Invalidate a course's cached videos",
    description="Drops every cached curation result of a course, e.g. after the course was regenerated."
)
async def invalidate_course_videos(
    user_id: str,
    course_id: str,
    engine: VideoCurationEngine = Depends(get_curation_engine)
):
    removed = await engine.invalidate_course_videos(user_id, course_id)
    return {"removed": removed}


@router.get(
    "/health",
    summary="Health Check",
    description="Provides the operational status of the service and its components, including basic statistics.",
    response_description="JSON object containing the health status and component readiness."
)
async def health_check(
    api_client: YouTubeAPIClient = Depends(get_api_client),
    engine: VideoCurationEngine = Depends(get_curation_engine)
):
    """Endpoint to check system health and retrieve operational statistics.

    Without an API key the service is "degraded": it runs, but every
    curation falls back.
    """
    logger.debug("Health check endpoint requested.")
    health_data = {
        "status": "healthy" if api_client.is_configured else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service_version": app_version,
        "components": {
            "api_client": "ready" if api_client.is_configured else "missing_api_key",
            "curation_engine": "ready",
        }
    }

    try:
        health_data["statistics"] = await engine.get_global_stats()
    except Exception as e:
        logger.error(f"Error collecting statistics for /health endpoint: {e}")
        health_data["statistics"] = {"error": f"Failed to collect detailed stats: {str(e)}"}

    return Response(
        content=json.dumps(health_data, default=str),
        status_code=status.HTTP_200_OK,
        media_type="application/json"
    )


@router.post(
    "/clear-caches",
    summary="Clear All Caches",
    description="Forces the clearing of the internal caches (embed probe verdicts and curated results), or of one named cache.",
    status_code=status.HTTP_200_OK,
    response_description="JSON object confirming cache clearing results."
)
async def clear_all_caches(
    name: Optional[str] = Query(None, max_length=64, description="Clear only this cache (e.g. 'curation')."),
    engine: VideoCurationEngine = Depends(get_curation_engine)
):
    """Endpoint to manually trigger the clearing of application caches."""
    logger.warning("Received request to clear caches via /clear-caches endpoint.", cache_name=name)
    try:
        results = await engine.clear_caches(name)
    except ValueError as e:
        raise handle_exception(ResourceNotFoundError(str(e)))
    return {
        "status": "success",
        "message": f"Cache {name} cleared successfully." if name else "All caches cleared successfully.",
        "details": results
    }
