#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Configuration module for the IntelliCourse video curator.

Defines configuration parameters and loads values from environment variables.
"""

import os
import logging
from typing import Any, Dict, Optional

# Initialize a basic logger for config loading issues
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Default configuration values
_CONFIG_DEFAULTS: Dict[str, Any] = {
    # API Configuration
    "API_KEY": "",
    "API_KEY_ENV_VAR": "YOUTUBE_API_KEY",
    "API_KEY_ENCRYPTED": "",  # Fernet token, base64; needs the salt and password env vars
    "API_KEY_ENCRYPTED_ENV_VAR": "YOUTUBE_API_KEY_ENCRYPTED",
    "API_KEY_SALT_ENV_VAR": "YOUTUBE_API_KEY_SALT",
    "API_KEY_PASSWORD_ENV_VAR": "YOUTUBE_API_KEY_PASSWORD",
    "APP_ENV": "development",  # Anything but "production" enables rejection diagnostics

    # Search (cheap id-only request)
    "SEARCH_MAX_RESULTS": 15,
    "SAFE_SEARCH": "strict",
    "REGION_CODE": "",  # e.g. "IN"; empty disables region-aware checks
    "RELEVANCE_LANGUAGE": "",
    "VIDEO_DURATION": "",  # any | short | medium | long; empty leaves it unset

    # Validation
    "BATCH_SIZE": 50,  # Max allowed by YouTube API for video details
    "MIN_VIEW_COUNT": 0,  # Videos with view count <= this are rejected

    # Embed probing
    "PROBE_SLICE_SIZE": 8,  # Max candidates sent to the embed prober
    "PROBE_CONCURRENCY": 4,
    "PROBE_TIMEOUT_SECONDS": 10.0,
    "EMBED_PROBE_TTL_SECONDS": 24 * 60 * 60,
    "EMBED_URL_TEMPLATE": "https://www.youtube.com/embed/{video_id}",
    "EMBED_MAX_SCAN_BYTES": 512 * 1024,  # Embed page bytes searched for error texts
    "EMBED_USER_AGENT": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),

    # Ranking
    "RANK_WEIGHT_VIEWS": 0.7,
    "RANK_WEIGHT_LIKES": 0.3,
    "RANK_TOP_N": 3,

    # Rate Limiting & Timeouts
    "MIN_DELAY_MS": 50,  # Min delay between API calls
    "MAX_DELAY_MS": 200,  # Max delay between API calls
    "API_RETRY_ATTEMPTS": 1,
    "API_RETRY_BASE_DELAY_MS": 500,
    "API_TIMEOUT_SECONDS": 15.0,  # Timeout for a single API request
    "PIPELINE_DEADLINE_SECONDS": 60.0,  # Upper bound for one curation run

    # Caching
    "REDIS_URL": "",
    "REDIS_SOCKET_TIMEOUT_SECONDS": 2.0,
    "CACHE_MAX_ENTRIES": 4096,
    "CACHE_EVICTION_PERCENT": 20,  # Percentage of entries to evict when cache is full
    "RESULT_CACHE_TTL_SECONDS": 24 * 60 * 60,

    # Circuit Breaker
    "CIRCUIT_BREAKER_THRESHOLD": 5,  # Failures before opening circuit
    "CIRCUIT_BREAKER_RESET_TIMEOUT": 300,  # Seconds before trying half-open state
    "CIRCUIT_HALF_OPEN_REQUESTS": 3,  # Successful requests needed in half-open to close

    # Web Server
    "DEFAULT_ENCODING": "utf-8",
    "MAX_CONTENT_LENGTH": 64 * 1024,  # Request body limit in bytes
    "ALLOWED_ORIGINS": [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
}


class Config:
    """Configuration class that loads values from environment variables."""

    def __init__(self, load_from_env=True):
        """Initialize configuration with default values and optionally from environment.

        Args:
            load_from_env: Whether to load values from environment variables
        """
        for key, value in _CONFIG_DEFAULTS.items():
            setattr(self, key, value)

        if load_from_env:
            self.load_from_env()

    @property
    def diagnostic_mode(self) -> bool:
        """Whether per-video rejection reasons should be logged."""
        return self.APP_ENV.lower() != "production"

    @property
    def region_code(self) -> Optional[str]:
        code = (self.REGION_CODE or "").strip().upper()
        return code or None

    def load_from_env(self):
        """Load configuration values from environment variables."""
        self.API_KEY = os.environ.get(self.API_KEY_ENV_VAR, self.API_KEY)
        self.API_KEY_ENCRYPTED = os.environ.get(self.API_KEY_ENCRYPTED_ENV_VAR, self.API_KEY_ENCRYPTED).strip()

        env_origins = os.environ.get("ALLOWED_ORIGINS", "")
        if env_origins:
            origins = [origin.strip() for origin in env_origins.split(",")]
            self.ALLOWED_ORIGINS = [o for o in origins if o]
            logger.info(f"CORS origins set from environment: {self.ALLOWED_ORIGINS}")

        for key in ("APP_ENV", "SAFE_SEARCH", "REGION_CODE", "RELEVANCE_LANGUAGE",
                    "VIDEO_DURATION", "REDIS_URL", "EMBED_USER_AGENT"):
            self._load_str_from_env(key)

        self._load_int_from_env("SEARCH_MAX_RESULTS")
        self._load_int_from_env("BATCH_SIZE")
        self._load_int_from_env("MIN_VIEW_COUNT")
        self._load_int_from_env("PROBE_SLICE_SIZE")
        self._load_int_from_env("PROBE_CONCURRENCY")
        self._load_float_from_env("PROBE_TIMEOUT_SECONDS")
        self._load_int_from_env("EMBED_PROBE_TTL_SECONDS")
        self._load_int_from_env("EMBED_MAX_SCAN_BYTES")
        self._load_float_from_env("RANK_WEIGHT_VIEWS")
        self._load_float_from_env("RANK_WEIGHT_LIKES")
        self._load_int_from_env("RANK_TOP_N")
        self._load_int_from_env("MIN_DELAY_MS")
        self._load_int_from_env("MAX_DELAY_MS")
        self._load_int_from_env("API_RETRY_ATTEMPTS")
        self._load_int_from_env("API_RETRY_BASE_DELAY_MS")
        self._load_float_from_env("API_TIMEOUT_SECONDS")
        self._load_float_from_env("PIPELINE_DEADLINE_SECONDS")
        self._load_float_from_env("REDIS_SOCKET_TIMEOUT_SECONDS")
        self._load_int_from_env("CACHE_MAX_ENTRIES")
        self._load_int_from_env("RESULT_CACHE_TTL_SECONDS")

        # YouTube caps search.list and videos.list at 50 items per page
        self.SEARCH_MAX_RESULTS = max(1, min(self.SEARCH_MAX_RESULTS, 50))
        self.BATCH_SIZE = max(1, min(self.BATCH_SIZE, 50))

        if not self.API_KEY and not self.API_KEY_ENCRYPTED:
            logger.warning(f"API key not found in env var {self.API_KEY_ENV_VAR} or {self.API_KEY_ENCRYPTED_ENV_VAR}.")

    def _load_str_from_env(self, key):
        """Load a string value from environment variable.

        Returns:
            bool: True if the value was loaded, False otherwise
        """
        env_value = os.environ.get(key)
        if env_value is not None:
            setattr(self, key, env_value.strip())
            return True
        return False

    def _load_int_from_env(self, key):
        """Load an integer value from environment variable.

        Args:
            key: The configuration key to load

        Returns:
            bool: True if the value was loaded, False otherwise
        """
        env_value = os.environ.get(key)
        if env_value is not None:
            try:
                setattr(self, key, int(env_value))
                return True
            except ValueError:
                logger.warning(f"Invalid integer value for {key}: {env_value}")
        return False

    def _load_float_from_env(self, key):
        """Load a float value from environment variable.

        Args:
            key: The configuration key to load

        Returns:
            bool: True if the value was loaded, False otherwise
        """
        env_value = os.environ.get(key)
        if env_value is not None:
            try:
                setattr(self, key, float(env_value))
                return True
            except ValueError:
                logger.warning(f"Invalid float value for {key}: {env_value}")
        return False


# Create a single instance of Config to be imported by other modules
config = Config(load_from_env=True)
