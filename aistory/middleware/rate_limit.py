"""Rate limiting middleware — in-memory with sliding window.

Guards against:
- Brute-force login / verification-code guessing (tight limit on /v1/auth/)
- Admin endpoint abuse (/v1/admin/)
- General API abuse (everything else)

Limits are read from settings on every request so they can be tuned without
rebuilding the app. Storage is per process; for multi-instance deployments
swap _store for a shared backend.
"""
from __future__ import annotations

import time
import logging
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class _RateWindow:
    """Sliding window counter for a single client."""
    timestamps: list[float] = field(default_factory=list)

    def count_in_window(self, window_seconds: float) -> int:
        cutoff = time.monotonic() - window_seconds
        self.timestamps = [t for t in self.timestamps if t > cutoff]
        return len(self.timestamps)

    def record(self) -> None:
        self.timestamps.append(time.monotonic())


class RateLimitStore:
    """In-memory rate limit storage with periodic cleanup."""

    def __init__(self):
        self._windows: dict[str, _RateWindow] = defaultdict(_RateWindow)
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = 300

    def check_and_record(self, key: str, limit: int, window_seconds: float) -> tuple[bool, int]:
        """Check if request is allowed, record it if so.

        Returns (allowed, current_count).
        """
        self._maybe_cleanup()
        window = self._windows[key]
        count = window.count_in_window(window_seconds)
        if count >= limit:
            return False, count
        window.record()
        return True, count + 1

    def _maybe_cleanup(self):
        now = time.monotonic()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        stale = [k for k, w in self._windows.items() if not w.timestamps]
        for k in stale:
            del self._windows[k]


_store = RateLimitStore()


def reset_store():
    """Reset rate limit state — used in tests."""
    _store._windows.clear()


# Paths exempt from rate limiting
_EXEMPT = {"/health", "/", "/docs", "/openapi.json"}


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For behind proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _find_limit(path: str) -> tuple[str, int, int] | None:
    """Return (bucket, limit, window) for a path, or None when exempt."""
    if path in _EXEMPT:
        return None
    prefix = settings.API_PREFIX
    if path.startswith(f"{prefix}/auth/"):
        return "auth", settings.RATE_LIMIT_AUTH_MAX, settings.RATE_LIMIT_AUTH_WINDOW
    if path.startswith(f"{prefix}/admin/"):
        return "admin", settings.RATE_LIMIT_ADMIN_MAX, settings.RATE_LIMIT_ADMIN_WINDOW
    return "api", settings.RATE_LIMIT_DEFAULT_MAX, settings.RATE_LIMIT_DEFAULT_WINDOW


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for IP-based rate limiting."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        rate = _find_limit(path)
        if rate is None:
            return await call_next(request)

        bucket, limit, window = rate
        client_ip = _get_client_ip(request)
        allowed, count = _store.check_and_record(f"{client_ip}:{bucket}", limit, window)

        if not allowed:
            logger.warning(f"Rate limited: {client_ip} on {path} ({count}/{limit} in {window}s)")
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests, please try again later"},
                headers={"Retry-After": str(window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        return response
