#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
FastAPI middleware for the video curator.

Rejects oversized request bodies, tags every response with a request id,
processing time and basic security headers, and logs one line per request.
"""

import time
import uuid

from fastapi import FastAPI, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from config import config
from logging_config import StructuredLogger

logger = StructuredLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request guard and access log."""

    def __init__(self, app: FastAPI, max_content_length: int = config.MAX_CONTENT_LENGTH):
        super().__init__(app)
        self.max_content_length = max_content_length

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"

        if method in ("POST", "PUT", "PATCH", "DELETE"):
            content_length = request.headers.get("content-length", "")
            if content_length.isdigit() and int(content_length) > self.max_content_length:
                logger.warning(
                    f"Request body too large: {content_length} bytes > {self.max_content_length} bytes limit.",
                    client_ip=client_ip, path=path, method=method, request_id=request_id
                )
                return JSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content={"detail": "Request body is too large.", "error_code": "CONTENT_TOO_LARGE"},
                    headers={"X-Request-ID": request_id}
                )

        response = await call_next(request)

        process_time_ms = (time.monotonic() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        log_data = {
            "path": path,
            "method": method,
            "status_code": response.status_code,
            "duration_ms": round(process_time_ms, 2),
            "client_ip": client_ip,
            "request_id": request_id,
        }
        if response.status_code >= 500:
            logger.error("Request completed", exc_info=False, **log_data)
        elif response.status_code >= 400:
            logger.warning("Request completed", **log_data)
        else:
            logger.info("Request completed", **log_data)
        return response
