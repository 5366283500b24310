"""HTTP middleware: metrics, correlation IDs and request logging."""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from securehls.core.logging import clear_correlation_id, set_correlation_id
from securehls.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Collapse ids, segment files and variant names so every lesson shares one series.
_PATH_PLACEHOLDERS = (
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
    (re.compile(r"/segments/[^/]+$"), "/segments/{segment}"),
    (re.compile(r"/playlist/[^/]+\.m3u8$"), "/playlist/{variant}"),
)


def normalize_path(path: str) -> str:
    """Route-shaped label for a request path."""
    for pattern, placeholder in _PATH_PLACEHOLDERS:
        path = pattern.sub(placeholder, path)
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time requests per normalized route."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        labels = {"method": request.method, "endpoint": normalize_path(request.url.path)}
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(**labels)

        in_progress.inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(time.perf_counter() - started)
            HTTP_REQUESTS_TOTAL.labels(status_code=str(status_code), **labels).inc()
            in_progress.dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopt the caller's correlation ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request.

    Only the path is logged: segment and key URLs carry capability tokens in
    their query strings.
    """

    logger = logging.getLogger("securehls.requests")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception(
                "Request failed",
                extra={**context, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            raise

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        self.logger.log(
            level,
            "Request completed",
            extra={
                **context,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response
