"""
NoteKeeper Backend — Request ID Middleware
============================================

What:  Gives every request a correlation ID, echoes it in `X-Request-ID` and
       makes it available to loggers and error handlers.
How:   Accepts a well-formed client-supplied `X-Request-ID`, otherwise mints
       one. The ID lives in a ContextVar for the duration of the request;
       `RequestIDLogFilter` copies it onto every log record.
Who:   Outermost application middleware.
"""

import logging
import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Client IDs end up in log lines; anything else is replaced
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# ── Context Variable ──────────────────────────────────────────────────────
# Coroutine-local: concurrent requests on one thread each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Use the client's X-Request-ID if it is 1-64 safe characters
        2. Otherwise generate an 8-character hex ID
        3. Store it in the ContextVar and on request.state
        4. Return it in the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER, "")
        rid = supplied if _VALID_REQUEST_ID.match(supplied) else new_request_id()

        # Not reset afterwards: the catch-all 500 handler runs outside this
        # middleware and still reads it. Each request runs in its own task.
        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class RequestIDLogFilter(logging.Filter):
    """Adds `request_id` to every record ("-" outside a request, e.g. in the worker)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("") or "-"
        return True
