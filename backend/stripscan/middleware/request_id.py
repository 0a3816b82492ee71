"""
StripScan Backend — Request ID Middleware
============================================

What:  Attaches a short correlation ID to every request and its response.
Why:   A failed upload on a phone can be matched to the exact server log lines
       when the client reports the X-Request-ID it received.
How:   Reuses a client-sent X-Request-ID or generates one, stores it in a
       ContextVar for loggers and exception handlers, echoes it back.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


def new_request_id() -> str:
    """Eight hex characters; enough to correlate, short enough to read aloud."""
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns the request ID before the route runs and returns it in a header."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
