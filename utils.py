#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
General utilities and helper classes for the video curator.

Includes Circuit Breaker, Retry Logic, LRU Cache with per-entry TTL,
Performance Timer, Secure API Key Manager and small query/URL helpers.
"""

import asyncio
import functools
import hashlib
import os
import random
import re
import time
from base64 import b64decode, b64encode, urlsafe_b64encode
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import httplib2
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from googleapiclient.errors import HttpError

from config import config
from exceptions import (
    CircuitOpenError, CriticalError, MalformedResponseError, QuotaExceededError,
    RateLimitedError, ResourceNotFoundError, TimeoutExceededError, TransientError,
    UpstreamUnavailableError
)
from logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# --- Circuit Breaker ---

class CircuitBreaker:
    """Implements the Circuit Breaker pattern to prevent cascading failures.

    Counts consecutive failures of the protected call. Past the threshold the
    circuit opens and calls fail fast with CircuitOpenError until reset_timeout
    elapses; then a limited number of trial calls are let through (half-open)
    and enough successes close the circuit again.
    """

    STATE_CLOSED = "closed"
    STATE_OPEN = "open"
    STATE_HALF_OPEN = "half-open"

    def __init__(self, name: str, failure_threshold: int = config.CIRCUIT_BREAKER_THRESHOLD,
                 reset_timeout: int = config.CIRCUIT_BREAKER_RESET_TIMEOUT,
                 half_open_max_requests: int = config.CIRCUIT_HALF_OPEN_REQUESTS):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_requests = half_open_max_requests

        self._failures = 0
        self._state = self.STATE_CLOSED
        self._last_failure_time = 0.0
        self._success_count_in_half_open = 0
        self._active_requests_in_half_open = 0
        self._lock = asyncio.Lock()

        logger.debug(
            f"Circuit breaker '{name}' initialized",
            breaker_name=name,
            threshold=failure_threshold,
            reset_timeout=reset_timeout
        )

    @property
    def state(self):
        return self._state

    async def _before_call(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if self._state == self.STATE_OPEN and (now - self._last_failure_time) > self.reset_timeout:
                self._state = self.STATE_HALF_OPEN
                self._success_count_in_half_open = 0
                self._active_requests_in_half_open = 0
                logger.info(f"Circuit breaker '{self.name}' entering half-open state",
                            breaker_name=self.name, state=self.STATE_HALF_OPEN)

            if self._state == self.STATE_OPEN:
                logger.warning(f"Circuit breaker '{self.name}' is open, failing fast",
                               breaker_name=self.name, state=self.STATE_OPEN)
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")

            if self._state == self.STATE_HALF_OPEN:
                if self._active_requests_in_half_open >= self.half_open_max_requests:
                    raise CircuitOpenError(f"Circuit breaker '{self.name}' half-open limit reached")
                self._active_requests_in_half_open += 1

    async def _record_failure(self, error: BaseException) -> None:
        async with self._lock:
            self._last_failure_time = time.monotonic()
            if self._state == self.STATE_HALF_OPEN:
                self._active_requests_in_half_open -= 1
                self._state = self.STATE_OPEN
                logger.warning(f"Circuit breaker '{self.name}' failed in half-open state, reopening",
                               breaker_name=self.name, error=str(error))
                return

            self._failures += 1
            if self._failures >= self.failure_threshold and self._state == self.STATE_CLOSED:
                self._state = self.STATE_OPEN
                logger.warning(f"Circuit breaker '{self.name}' opened after {self._failures} failures",
                               breaker_name=self.name, failures=self._failures, error=str(error))

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == self.STATE_HALF_OPEN:
                self._active_requests_in_half_open -= 1
                self._success_count_in_half_open += 1
                if self._success_count_in_half_open >= self.half_open_max_requests:
                    self._state = self.STATE_CLOSED
                    self._failures = 0
                    logger.info(f"Circuit breaker '{self.name}' closed after half-open successes",
                                breaker_name=self.name)
            else:
                self._failures = 0

    async def __call__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute the async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open or half-open limit is reached.
            Any exception raised by the executed function.
        """
        await self._before_call()
        try:
            result = await func(*args, **kwargs)
        except (ResourceNotFoundError, QuotaExceededError):
            # The service answered; a missing resource or spent quota is not an outage
            await self._record_success()
            raise
        except Exception as e:
            await self._record_failure(e)
            raise
        except asyncio.CancelledError:
            # No verdict from a cancelled call; hand its half-open slot back
            self._release_half_open_slot()
            raise
        await self._record_success()
        return result

    def _release_half_open_slot(self) -> None:
        if self._state == self.STATE_HALF_OPEN and self._active_requests_in_half_open > 0:
            self._active_requests_in_half_open -= 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state,
            "failures": self._failures,
            "threshold": self.failure_threshold,
            "reset_timeout_seconds": self.reset_timeout,
        }


# --- Retry Logic ---

# Transport-level failures of the googleapiclient/httplib2 stack
TRANSPORT_ERRORS: Tuple[type, ...] = (httplib2.HttpLib2Error, OSError, ConnectionError)


class RetryableRequest:
    """Handles requests with retry logic, exponential backoff, and jitter."""

    @staticmethod
    def classify_http_error(error: HttpError, op_name: str) -> Exception:
        """Map a googleapiclient HttpError onto the application exception hierarchy."""
        status_code = getattr(getattr(error, "resp", None), "status", None)
        try:
            status_code = int(status_code)
        except (TypeError, ValueError):
            status_code = None

        content = getattr(error, "content", b"") or b""
        if isinstance(content, bytes):
            content = content.decode(config.DEFAULT_ENCODING, errors="replace")

        if status_code == 403 and ("quotaExceeded" in content or "dailyLimitExceeded" in content):
            return QuotaExceededError(f"YouTube API quota exceeded during '{op_name}'")
        if status_code == 404:
            return ResourceNotFoundError(f"YouTube resource not found during '{op_name}'")
        if status_code == 429 or (status_code == 403 and "rateLimitExceeded" in content):
            return RateLimitedError(f"YouTube API rate limited '{op_name}'")
        return UpstreamUnavailableError(f"YouTube API error {status_code} during '{op_name}'",
                                        status_code=status_code)

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        if isinstance(error, (QuotaExceededError, ResourceNotFoundError, CriticalError)):
            return False
        if isinstance(error, UpstreamUnavailableError):
            # 4xx answers from the API will not change on retry
            return error.status_code is None or error.status_code >= 500
        return isinstance(error, TransientError)

    @staticmethod
    async def execute_with_retry(
        func: Callable[..., Any],
        *args: Any,
        max_retries: int = config.API_RETRY_ATTEMPTS,
        base_delay_ms: int = config.API_RETRY_BASE_DELAY_MS,
        timeout_seconds: float = config.API_TIMEOUT_SECONDS,
        jitter_factor: float = 0.5,
        operation_name: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        """Execute a function (sync or async) with retry logic, timeout, backoff, and jitter.

        Sync functions run in the default executor so the event loop stays free
        while googleapiclient performs its blocking request.

        Returns:
            The result of the function if successful.

        Raises:
            QuotaExceededError: On a 403 quota error (never retried).
            ResourceNotFoundError: On a 404 (never retried).
            MalformedResponseError: If the response body could not be decoded.
            TimeoutExceededError: If the final attempt timed out.
            UpstreamUnavailableError: For HTTP or transport errors after retries.
        """
        op_name = operation_name or getattr(func, '__name__', 'unknown_operation')
        last_exception: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                if asyncio.iscoroutinefunction(func):
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)
                loop = asyncio.get_running_loop()
                partial_func = functools.partial(func, *args, **kwargs)
                return await asyncio.wait_for(loop.run_in_executor(None, partial_func),
                                              timeout=timeout_seconds)
            except asyncio.TimeoutError:
                last_exception = TimeoutExceededError(
                    f"Operation '{op_name}' timed out after {timeout_seconds} seconds on attempt {attempt + 1}"
                )
            except HttpError as e:
                last_exception = RetryableRequest.classify_http_error(e, op_name)
            except TRANSPORT_ERRORS as e:
                last_exception = UpstreamUnavailableError(
                    f"Transport error during '{op_name}': {type(e).__name__}: {e}"
                )
            except ValueError as e:
                # googleapiclient raises ValueError-derived errors when the body is not JSON
                raise MalformedResponseError(f"Undecodable response for '{op_name}': {e}") from e
            except TransientError as e:
                last_exception = e

            if not RetryableRequest._is_retryable(last_exception):
                raise last_exception

            logger.warning(
                f"Retryable error in '{op_name}' (attempt {attempt + 1}): {type(last_exception).__name__}",
                operation=op_name,
                attempt=attempt + 1,
                error_details=str(last_exception)
            )

            if attempt < max_retries:
                jitter = (random.random() * 2 - 1) * jitter_factor
                delay_seconds = (base_delay_ms / 1000.0) * (2 ** attempt) * (1 + jitter)
                actual_delay = max(0.0, min(delay_seconds, 30.0))
                logger.info(f"Retrying '{op_name}' in {actual_delay:.2f} seconds",
                            operation=op_name, delay_seconds=actual_delay)
                await asyncio.sleep(actual_delay)

        logger.warning(f"Operation '{op_name}' failed after {max_retries + 1} attempts.",
                       operation=op_name, final_error=str(last_exception))
        raise last_exception


# --- Performance Timer ---

@contextmanager
def performance_timer(operation_name: str, threshold_ms: float = 100.0):
    """Context manager for timing operations with threshold-based logging.

    Logs at DEBUG below threshold_ms, INFO above it and WARNING above ten
    times the threshold.
    """
    start_time = time.monotonic()
    try:
        yield
    finally:
        duration_ms = (time.monotonic() - start_time) * 1000
        log_data = {"operation": operation_name, "duration_ms": round(duration_ms, 2)}

        if duration_ms > threshold_ms * 10:
            logger.warning(f"SLOW OPERATION: '{operation_name}' took {duration_ms:.2f}ms", **log_data)
        elif duration_ms > threshold_ms:
            logger.info(f"Performance watch: '{operation_name}' took {duration_ms:.2f}ms", **log_data)
        else:
            logger.debug(f"Performance: '{operation_name}' completed in {duration_ms:.2f}ms", **log_data)


# --- LRU Cache ---

@dataclass(frozen=True)
class CacheEntry:
    """A cached value with the time it was stored and its own TTL."""

    key: Any
    value: Any
    stored_at: float
    ttl_seconds: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.ttl_seconds is not None and (now - self.stored_at) > self.ttl_seconds


class LRUCache:
    """Asyncio-safe Least Recently Used cache with per-entry Time-To-Live.

    Entries are immutable CacheEntry records replaced as a whole on put, so a
    reader never observes a partial write. Expiry is lazy: an entry is checked
    against its TTL when read and dropped if stale; nothing runs in the
    background. When full, eviction_percent of the oldest entries are removed.
    """

    def __init__(self, maxsize: int = 128, ttl_seconds: Optional[float] = None,
                 eviction_percent: int = config.CACHE_EVICTION_PERCENT,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the LRU cache.

        Args:
            maxsize: The maximum number of items to store in the cache. Must be > 0.
            ttl_seconds: Default time-to-live for entries put without their own TTL.
                         None means entries do not expire.
            eviction_percent: Percentage (1-100) of cache to evict when full.
            clock: Monotonic time source; injectable for tests.
        """
        if maxsize <= 0:
            raise ValueError("LRUCache maxsize must be greater than 0")
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self.eviction_percent = max(1, min(int(eviction_percent), 100))
        self._num_to_evict = max(1, int(self.maxsize * (self.eviction_percent / 100.0)))
        self._clock = clock

        self._cache: "OrderedDict[Any, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "ttl_expirations": 0,
        }

    async def get(self, key: Any) -> Optional[Any]:
        """Return the cached value, or None if absent or expired.

        A stored falsy value such as False is returned as-is and counts as a hit.
        """
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired(self._clock()):
                self._stats["ttl_expirations"] += 1
                self._stats["misses"] += 1
                del self._cache[key]
                return None

            self._cache.move_to_end(key)
            self._stats["hits"] += 1
            return entry.value

    async def put(self, key: Any, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Add or replace an item. ttl_seconds overrides the cache default."""
        if value is None:
            raise ValueError("LRUCache cannot store None; None signals a miss")
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        async with self._lock:
            if key not in self._cache and len(self._cache) >= self.maxsize:
                self._evict_lru_items()
            self._cache[key] = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl_seconds=ttl)
            self._cache.move_to_end(key)

    def _evict_lru_items(self) -> None:
        """Drop the oldest entries; called with the lock held when the cache is full."""
        for _ in range(self._num_to_evict):
            if not self._cache:
                break
            self._cache.popitem(last=False)
            self._stats["evictions"] += 1

    async def clear(self) -> int:
        """Remove all items from the cache and return how many were removed."""
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    async def get_stats(self) -> Dict[str, Any]:
        async with self._lock:
            stats = self._stats.copy()
            stats["size"] = len(self._cache)
            stats["maxsize"] = self.maxsize
            stats["ttl_enabled"] = self.ttl_seconds is not None
            total_lookups = stats["hits"] + stats["misses"]
            stats["hit_ratio"] = (stats["hits"] / total_lookups) if total_lookups > 0 else 0.0
            return stats

    async def remove(self, key: Any) -> bool:
        """Remove a specific item. Returns True if it was present."""
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def remove_prefix(self, prefix: str) -> int:
        """Remove every string key starting with prefix. Returns the count removed."""
        async with self._lock:
            doomed = [k for k in self._cache if isinstance(k, str) and k.startswith(prefix)]
            for key in doomed:
                del self._cache[key]
            return len(doomed)


# --- Secure API Key Manager ---

class SecureApiKeyManager:
    """Manages the YouTube API key with optional Fernet encryption.

    The plain key is read from the environment. When a password and salt are
    configured, an encrypted key (base64 Fernet token) can be supplied instead
    and is decrypted on first access.
    """

    def __init__(self, encrypted_key: Optional[str] = None,
                 key_env_var: str = config.API_KEY_ENV_VAR,
                 key_salt_env_var: str = config.API_KEY_SALT_ENV_VAR,
                 key_password_env_var: str = config.API_KEY_PASSWORD_ENV_VAR):
        self.encrypted_key_input = encrypted_key
        self.key_env_var = key_env_var
        self.key_salt_env_var = key_salt_env_var
        self.key_password_env_var = key_password_env_var

        self._key: Optional[str] = None
        self._fernet: Optional[Fernet] = None
        self._initialize_encryption()

    @property
    def encryption_available(self) -> bool:
        return self._fernet is not None

    def _initialize_encryption(self) -> None:
        """Sets up the Fernet cipher if password and salt are both available."""
        password = os.environ.get(self.key_password_env_var, "")
        salt = os.environ.get(self.key_salt_env_var, "")
        if not password or not salt:
            logger.debug("Encryption password or salt missing. API key handled in plain text.")
            return

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(config.DEFAULT_ENCODING),
            iterations=100000,
        )
        self._fernet = Fernet(urlsafe_b64encode(kdf.derive(password.encode(config.DEFAULT_ENCODING))))
        logger.info("API key encryption initialized.")

    def get_key(self) -> str:
        """Return the API key, decrypting the supplied token if possible; "" if missing."""
        if self._key is None:
            plain_key = os.environ.get(self.key_env_var, "")
            if self.encrypted_key_input and self._fernet:
                try:
                    self._key = self.decrypt_key(self.encrypted_key_input)
                except (InvalidToken, ValueError) as e:
                    logger.error(f"Failed to decrypt API key, using {self.key_env_var}: {e}", exc_info=False)
                    self._key = plain_key
            else:
                if self.encrypted_key_input:
                    logger.warning(f"Encrypted API key ignored: set {self.key_salt_env_var} and "
                                   f"{self.key_password_env_var} to decrypt it.")
                self._key = plain_key
        return self._key

    def encrypt_key(self, key: str) -> Optional[str]:
        """Encrypt a plain API key; None if encryption is not configured."""
        if not self._fernet or not key:
            return None
        return b64encode(self._fernet.encrypt(key.encode(config.DEFAULT_ENCODING))).decode(config.DEFAULT_ENCODING)

    def decrypt_key(self, encrypted_b64: str) -> str:
        if not self._fernet:
            raise ValueError("Encryption not available, cannot decrypt key.")
        if not encrypted_b64:
            raise ValueError("Encrypted key input is empty.")
        return self._fernet.decrypt(b64decode(encrypted_b64)).decode(config.DEFAULT_ENCODING)

    def validate_key(self, key_to_validate: Optional[str] = None) -> bool:
        """Heuristic format check: non-empty, [A-Za-z0-9_-]. Length is only warned about."""
        key = key_to_validate if key_to_validate is not None else self.get_key()
        if not key:
            return False
        if not (30 <= len(key) <= 50):
            logger.warning(f"API key length ({len(key)}) is outside the usual range.")
        return re.match(r'^[A-Za-z0-9_-]+$', key) is not None

    def obfuscate_key(self, key_to_obfuscate: Optional[str] = None) -> str:
        """Return e.g. "AIza...abc" for logging, or "[MISSING]"."""
        key = key_to_obfuscate if key_to_obfuscate is not None else self.get_key()
        if not key:
            return "[MISSING]"
        if len(key) > 7:
            return f"{key[:4]}...{key[-3:]}"
        return f"{key[0]}...{'*' * (len(key) - 1)}"


# --- Query helpers ---

_WHITESPACE_RE = re.compile(r"\s+")


@functools.lru_cache(maxsize=1024)
def normalize_query(query: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", (query or "").strip()).lower()


def short_hash(text: str, length: int = 8) -> str:
    """First `length` hex characters of the SHA-256 of text."""
    return hashlib.sha256(text.encode(config.DEFAULT_ENCODING)).hexdigest()[:length]
