#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Main FastAPI application setup for the video curator.

Initializes the FastAPI application, sets up lifespan management for the
services, registers middleware and includes the API routes.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import version directly from __init__.py
from __init__ import __version__

from api import dependencies, routes
from cache_store import create_cache_store
from config import config
from logging_config import StructuredLogger
from middleware import RequestContextMiddleware
from services.engine import VideoCurationEngine
from services.youtube_api import YouTubeAPIClient

logger = StructuredLogger(__name__)


# --- Lifespan Management ---

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Builds the services on startup and closes them on shutdown, populating
    the global instances in api.dependencies. A missing API key is not
    fatal: the engine starts and falls back on every request.
    """
    logger.info("Starting video curator FastAPI application lifespan...")

    try:
        dependencies.api_client = YouTubeAPIClient()
        engine = VideoCurationEngine(api_client=dependencies.api_client, cache=create_cache_store())
        await engine.start()
        dependencies.curation_engine = engine
        logger.info("Video curator services initialized successfully.",
                    api_configured=dependencies.api_client.is_configured)
    except Exception as e:
        logger.critical(f"Critical unexpected error during service initialization: {e}")
        dependencies.api_client = None
        dependencies.curation_engine = None

    yield

    # --- Shutdown ---
    logger.info("Shutting down video curator FastAPI application lifespan...")
    if dependencies.curation_engine:
        try:
            await dependencies.curation_engine.shutdown()
        except Exception as e:
            logger.error(f"Error during curation engine shutdown: {e}")
    dependencies.curation_engine = None
    dependencies.api_client = None
    logger.info("Lifespan cleanup finished.")


# --- FastAPI Application Instantiation ---

app = FastAPI(
    lifespan=lifespan,
    title="IntelliCourse Video Curator API",
    description="Curates safe, embeddable, popularity-ranked YouTube videos for course modules.",
    version=__version__
)

# --- Middleware Registration ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"]
)
app.add_middleware(RequestContextMiddleware)
logger.debug(f"Middleware registered. Allowed origins: {config.ALLOWED_ORIGINS}")

app.include_router(routes.router)
logger.info("FastAPI application setup complete.")
