"""In-memory sliding-window rate limiter for write requests.

Reads are cheap (served from the in-memory collection) and are never
limited.  Edits, flushes and reloads each reach the backing store sooner or
later, so they share a per-client budget.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings

LIMITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP sliding window limit on mutating requests."""

    def __init__(
        self, app: Any, settings: Settings | None = None, window_seconds: float = 60
    ) -> None:
        super().__init__(app)
        s = settings or get_settings()
        self._max_requests = s.rate_limit_per_minute
        self._window_seconds = window_seconds
        # ip -> timestamps of recent write requests, oldest first
        self._requests: dict[str, deque[float]] = {}
        self._last_sweep = 0.0

    def _client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _cleanup(self, ip: str, now: float) -> int:
        """Drop expired timestamps for one client; forget it once idle."""
        window = self._requests.get(ip)
        if window is None:
            return 0
        cutoff = now - self._window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        if not window:
            del self._requests[ip]
        return len(window)

    def _sweep(self, now: float) -> None:
        # At most once per window, over every client seen
        if now - self._last_sweep < self._window_seconds:
            return
        self._last_sweep = now
        for ip in list(self._requests):
            self._cleanup(ip, now)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method not in LIMITED_METHODS:
            return await call_next(request)

        ip = self._client_ip(request)
        now = time.monotonic()
        self._sweep(now)
        count = self._cleanup(ip, now)

        if count >= self._max_requests:
            oldest = self._requests[ip][0] if count else now
            retry_after = int(self._window_seconds - (now - oldest))
            return Response(
                content='{"detail":"Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(max(retry_after, 1))},
            )

        self._requests.setdefault(ip, deque()).append(now)
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(self._max_requests - count - 1, 0))
        return response
