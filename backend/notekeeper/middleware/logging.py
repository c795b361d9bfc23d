"""
NoteKeeper Backend — Request Logging Middleware
=================================================

What:  One access log line per HTTP request with method, path, status and
       duration.
How:   Times the downstream call; picks the level from the status class
       (5xx ERROR, 4xx WARNING, else INFO). The request ID is attached by
       `RequestIDLogFilter`.
Who:   Runs inside RequestIDMiddleware so the ID is already set.

    2026-01-15T12:00:00 [INFO] notekeeper.access [a1b2c3d4]: POST /api/notes/…/archives 202 12.4ms from 10.0.0.7

Privacy: request and response bodies (note text, attachment bytes) are never
logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("notekeeper.access")

# Probed every few seconds by orchestrators; not worth a log line each
SKIP_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms from %s",
            request.method,
            path,
            status,
            duration_ms,
            client_ip,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
