"""
StripScan Backend — Request Logging Middleware
=================================================

What:  One access log line per HTTP request.
Why:   Upload latency is dominated by image decoding and QR detection; the
       duration on each line shows when that work degrades.
How:   Measures wall time around the downstream call and logs method, path,
       status, duration and client address with the request ID.

Not logged:
    - Request bodies (photos of test strips)
    - GET /health, which every client polls on a fixed interval
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from stripscan.middleware.request_id import request_id_var

logger = logging.getLogger("stripscan.access")

QUIET_PATHS = frozenset({"/health"})


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs `<method> <path> <status> <ms> [<request id>] from <ip>`.

    5xx lines are ERROR, 4xx lines WARNING (rejected or duplicate uploads),
    everything else INFO.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code

        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
