"""
Request middleware: correlation id, acting user and timing.

For every request:
    1. take X-Request-ID from the caller or mint one
    2. bind request id + X-User-Id into the logging context
    3. time the handler, echo X-Request-ID and X-Process-Time
    4. write one access line (WARNING for 4xx/5xx)
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROCESS_TIME_HEADER = "X-Process-Time"
USER_HEADER = "X-User-Id"

# No access line for these
_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path
        token = bind_request_context(
            request_id=request_id,
            user_id=request.headers.get(USER_HEADER),
        )
        started = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "%s %s raised after %.1fms",
                    request.method, path, _elapsed_ms(started),
                    extra={"endpoint": path, "status_code": 500},
                )
                raise

            elapsed = _elapsed_ms(started)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[PROCESS_TIME_HEADER] = f"{elapsed:.1f}ms"

            if not path.startswith(_UNLOGGED_PREFIXES):
                logger.log(
                    logging.WARNING if response.status_code >= 400 else logging.INFO,
                    "%s %s %d (%.1fms)",
                    request.method, path, response.status_code, elapsed,
                    extra={
                        "endpoint": path,
                        "status_code": response.status_code,
                        "duration_ms": round(elapsed, 1),
                    },
                )
            return response
        finally:
            reset_request_context(token)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
