#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
FastAPI dependency injection functions for the video curator services.

Route handlers receive the API client and curation engine through these
functions, which fail with 503 when startup could not build them.
"""

from typing import Optional

from fastapi import HTTPException, status

from logging_config import StructuredLogger
from services.engine import VideoCurationEngine
from services.youtube_api import YouTubeAPIClient

logger = StructuredLogger(__name__)

# --- Global Service Instances ---
# Populated during the application lifespan startup.
api_client: Optional[YouTubeAPIClient] = None
curation_engine: Optional[VideoCurationEngine] = None


def get_api_client() -> YouTubeAPIClient:
    """Dependency function to get the initialized YouTubeAPIClient instance.

    Raises:
        HTTPException: 503 Service Unavailable if the client is not initialized.
    """
    if not api_client:
        logger.critical("Dependency Error: YouTube API Client not initialized.", exc_info=False)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Initialization Error: YouTube API Client is not available.",
            headers={"X-Error-Code": "SERVICE_UNAVAILABLE_API_CLIENT"}
        )
    return api_client


def get_curation_engine() -> VideoCurationEngine:
    """Dependency function to get the initialized VideoCurationEngine instance.

    A missing API key does not make the engine unavailable; it then answers
    every request with the fallback.

    Raises:
        HTTPException: 503 Service Unavailable if the engine is not initialized.
    """
    if not curation_engine:
        logger.critical("Dependency Error: Video Curation Engine not initialized.", exc_info=False)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Initialization Error: Curation Engine is not available.",
            headers={"X-Error-Code": "SERVICE_UNAVAILABLE_CURATION_ENGINE"}
        )
    return curation_engine
