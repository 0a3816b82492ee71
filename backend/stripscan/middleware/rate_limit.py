"""
StripScan Backend — Upload Rate Limiting Middleware
=====================================================

What:  Per-IP sliding window limit on photo uploads.
Why:   Each upload costs a full image decode, a thumbnail encode and a QR
       detection pass; a misbehaving client replaying its queue in a tight
       loop must not starve everyone else.
How:   Keeps the timestamps of recent uploads per client IP. When the window
       already holds `rate_limit_requests` entries the request is answered
       with 429 and a Retry-After header.

Only POST requests to the upload path are counted. History reads, thumbnails
and health polls are never limited.

Single process only: counters live in memory and are not shared between
uvicorn workers.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from stripscan.config import settings
from stripscan.exceptions import RateLimitExceededError
from stripscan.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

LIMITED_ROUTES = frozenset({("POST", "/test-strips/upload")})


class SlidingWindowLimiter:
    """Timestamps per key; `hit` returns seconds to wait, or None if allowed."""

    def __init__(self, max_requests: int, window_seconds: int, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def hit(self, key: str) -> Optional[int]:
        now = self._clock()
        window_start = now - self.window_seconds
        hits = self._hits[key]

        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= self.max_requests:
            return int(hits[0] + self.window_seconds - now) + 1

        hits.append(now)
        self._forget_idle(window_start)
        return None

    def _forget_idle(self, window_start: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in idle:
            del self._hits[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects uploads over the configured per-IP rate.

    The 429 body has the same shape as every other error response. It is built
    here because exceptions raised inside BaseHTTPMiddleware never reach the
    application's exception handlers.
    """

    def __init__(self, app, max_requests: Optional[int] = None, window_seconds: Optional[int] = None):
        super().__init__(app)
        self.limiter = SlidingWindowLimiter(
            max_requests or settings.rate_limit_requests,
            window_seconds or settings.rate_limit_window,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if (request.method, request.url.path) not in LIMITED_ROUTES:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        retry_after = self.limiter.hit(client_ip)
        if retry_after is None:
            return await call_next(request)

        logger.warning(
            "Upload rate limit exceeded for %s (%d per %ds)",
            client_ip,
            self.limiter.max_requests,
            self.limiter.window_seconds,
        )
        exc = RateLimitExceededError(retry_after=retry_after)
        return JSONResponse(
            status_code=429,
            content={
                "error": exc.kind.value,
                "message": exc.message,
                "details": {"retry_after": retry_after},
                "request_id": request_id_var.get(""),
            },
            headers={"Retry-After": str(retry_after)},
        )
