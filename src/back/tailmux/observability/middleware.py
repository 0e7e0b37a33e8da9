"""Observability middleware for the tailmux control surface.

Provides:
- ``RequestIdMiddleware`` -- accepts or generates ``X-Request-ID``, stores it
  for structured-log correlation, and echoes it on the response.
- ``AccessMiddleware`` -- times each request once, then records the
  Prometheus counter and latency histogram and writes one log line.

These only see HTTP traffic. The terminal WebSocket is instrumented in the
pty module itself.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx
from .metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL

logger = get_logger(__name__)

_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")

# Known routes keep their path as the metric label; everything else is
# static content and collapses to one label.
_API_PREFIXES = ("/api/", "/health", "/metrics")


def _normalize_path(path: str) -> str:
    """Collapse static asset paths for metric labels."""
    if path.startswith(_API_PREFIXES):
        return path
    return "/static"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate or accept X-Request-ID and propagate via contextvars.

    Malformed incoming IDs are replaced with a fresh UUID.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming_id = request.headers.get("x-request-id", "")
        rid = incoming_id if _VALID_REQUEST_ID.match(incoming_id) else str(uuid.uuid4())

        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = rid
        return response


class AccessMiddleware(BaseHTTPMiddleware):
    """Count, time, and log every control-surface request.

    A handler that raises is recorded as status 500 before the error
    propagates.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = time.perf_counter() - start
            path = _normalize_path(request.url.path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method, path=path, status=str(status),
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=path).observe(elapsed)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status=status,
                duration_ms=round(elapsed * 1000, 2),
            )
