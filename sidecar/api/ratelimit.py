"""Per-client rate limiting middleware.

Fixed one-minute windows keyed by client IP: the first entry of
X-Forwarded-For when a proxy sets it, the peer address otherwise.
Exempt paths: /health (probes from the kubelet must never be throttled).
"""

from __future__ import annotations

import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

# Expired windows are swept once the table grows past this size.
_PRUNE_THRESHOLD = 4096


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients that exceed ``limit`` requests per window."""

    def __init__(  # type: ignore[override]
        self,
        app,
        limit: int = 60,
        window_seconds: float = 60.0,
        exempt_paths: tuple[str, ...] = ("/health",),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds
        self.exempt_paths = exempt_paths
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        if not self.allow(client_ip(request)):
            return PlainTextResponse("Rate limit exceeded", status_code=429)
        return await call_next(request)

    def allow(self, key: str) -> bool:
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)

        if len(self._windows) > _PRUNE_THRESHOLD:
            self._prune(now)
        return count <= self.limit

    def _prune(self, now: float) -> None:
        expired = [
            key for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
