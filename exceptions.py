#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Custom exception classes and error handling utilities for the video curator.

Pipeline stages convert most of these into empty results at their boundary;
the HTTP layer uses the error code and status mapping for its responses.
"""

from typing import Optional
from fastapi import HTTPException, status


# --- Base Exception Classes ---

class AppBaseError(Exception):
    """Base class for all application-specific exceptions.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        http_status_code: HTTP status code to use in API responses
        retry_after: Optional seconds to wait before retrying (for rate limits)
    """

    def __init__(self, message: str, error_code: Optional[str] = None,
                http_status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
                retry_after: Optional[int] = None):
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.http_status_code = http_status_code
        self.retry_after = retry_after
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        """Convert this exception to a FastAPI HTTPException.

        Returns:
            HTTPException: FastAPI exception with appropriate status and headers
        """
        headers = {"X-Error-Code": self.error_code}
        if self.retry_after:
            headers["Retry-After"] = str(self.retry_after)

        return HTTPException(
            status_code=self.http_status_code,
            detail=self.message,
            headers=headers
        )


class TransientError(AppBaseError):
    """Base class for retryable errors that might be temporary."""
    pass


class CriticalError(AppBaseError):
    """Base class for non-retryable errors that indicate a serious problem."""
    pass


# --- Upstream-Related Exceptions ---

class UpstreamUnavailableError(TransientError):
    """Raised when YouTube (Data API or embed page) fails at the transport level or answers non-2xx."""

    def __init__(self, message: str = "Upstream service unavailable", stage: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.stage = stage
        self.status_code = status_code
        super().__init__(
            message=message,
            error_code="UPSTREAM_UNAVAILABLE",
            http_status_code=status.HTTP_502_BAD_GATEWAY,
            retry_after=30
        )


class MalformedResponseError(AppBaseError):
    """Raised when an upstream body cannot be parsed at all."""

    def __init__(self, message: str = "Malformed upstream response"):
        super().__init__(
            message=message,
            error_code="MALFORMED_UPSTREAM_RESPONSE",
            http_status_code=status.HTTP_502_BAD_GATEWAY
        )


class QuotaExceededError(AppBaseError):
    """Raised when the YouTube API quota has been exhausted."""

    def __init__(self, message: str = "YouTube API quota exceeded"):
        super().__init__(
            message=message,
            error_code="QUOTA_EXCEEDED",
            http_status_code=status.HTTP_403_FORBIDDEN,
            retry_after=3600  # Quota resets daily; one hour is a polite hint
        )


class ResourceNotFoundError(AppBaseError):
    """Raised when a requested YouTube resource cannot be found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(
            message=message,
            error_code="RESOURCE_NOT_FOUND",
            http_status_code=status.HTTP_404_NOT_FOUND
        )


class RateLimitedError(TransientError):
    """Raised when requests are being rate limited."""

    def __init__(self, message: str = "API rate limit reached", retry_after: int = 30):
        super().__init__(
            message=message,
            error_code="RATE_LIMITED",
            http_status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            retry_after=retry_after
        )


class APIConfigurationError(CriticalError):
    """Raised when the YouTube API key is missing or the client cannot be built."""

    def __init__(self, message: str = "API configuration error"):
        super().__init__(
            message=message,
            error_code="API_CONFIG_ERROR",
            http_status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class CircuitOpenError(TransientError):
    """Raised when the circuit breaker is open and preventing requests."""

    def __init__(self, message: str = "Service temporarily unavailable due to API issues"):
        super().__init__(
            message=message,
            error_code="SERVICE_UNAVAILABLE",
            http_status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            retry_after=60
        )


class InvalidInputError(AppBaseError):
    """Raised when the user input is invalid."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(
            message=message,
            error_code="INVALID_INPUT",
            http_status_code=status.HTTP_400_BAD_REQUEST
        )


class TimeoutExceededError(TransientError):
    """Raised when an operation times out."""

    def __init__(self, message: str = "Operation timed out"):
        super().__init__(
            message=message,
            error_code="TIMEOUT",
            http_status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            retry_after=10
        )


# Errors a pipeline stage absorbs into an empty result
DEGRADABLE_ERRORS = (
    TransientError,
    MalformedResponseError,
    QuotaExceededError,
    ResourceNotFoundError,
    APIConfigurationError,
)


# --- Error Handling Utilities ---

def handle_exception(exception: Exception) -> HTTPException:
    """Convert any exception to an appropriate HTTPException.

    Args:
        exception: The exception to handle

    Returns:
        HTTPException: FastAPI exception with appropriate status and headers
    """
    if isinstance(exception, AppBaseError):
        return exception.to_http_exception()

    elif isinstance(exception, ValueError):
        return InvalidInputError(str(exception)).to_http_exception()

    elif isinstance(exception, HTTPException):
        return exception

    else:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {type(exception).__name__}",
            headers={"X-Error-Code": "INTERNAL_SERVER_ERROR"}
        )
