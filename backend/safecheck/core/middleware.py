"""
Request middleware: correlation IDs and timing.

Every response carries X-Request-ID (echoed from the caller when supplied)
and X-Process-Time. Check-in, emergency and queue calls are logged one line
each; docs and health probes are not, since probes poll constantly.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.safecheck.core.logging_config import bind_request, release_request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path
        token = bind_request(request_id, path)
        start = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "%s %s → unhandled error after %.1fms",
                    request.method, path, (time.perf_counter() - start) * 1000,
                    extra={"status_code": 500, "endpoint": path},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if not path.startswith(_UNLOGGED_PREFIXES):
                logger.log(
                    logging.WARNING if response.status_code >= 400 else logging.INFO,
                    "%s %s → %d (%.1fms)",
                    request.method, path, response.status_code, duration_ms,
                    extra={
                        "duration_ms": round(duration_ms, 1),
                        "status_code": response.status_code,
                        "endpoint": path,
                    },
                )
            return response
        finally:
            release_request(token)
