"""Per-client sliding-window rate limiting.

:class:`SlidingWindowLimiter` keeps a deque of request timestamps per
client key; :class:`RateLimitMiddleware` applies it to every request
except health probes.  State is process-local: each server instance
limits independently, which is acceptable for abuse protection and
carries no correctness weight for dispatch or tracking.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from typing import Final

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_EXEMPT_PATHS: Final[frozenset[str]] = frozenset({
    "/api/v1/health",
    "/api/v1/health/ready",
    "/docs",
    "/openapi.json",
})


class SlidingWindowLimiter:
    """Allow at most *limit* hits per key within *window_seconds*."""

    __slots__ = ("_clock", "_hits", "_limit", "_lock", "_window")

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    async def hit(self, key: str) -> tuple[bool, int]:
        """Record a hit for *key*.

        Returns ``(allowed, value)`` where *value* is the remaining
        budget when allowed, or the retry-after seconds when not.
        """
        now = self._clock()
        async with self._lock:
            window = self._hits.setdefault(key, deque())
            cutoff = now - self._window
            while window and window[0] < cutoff:
                window.popleft()

            if len(window) >= self._limit:
                retry_after = max(1, int(self._window - (now - window[0])) + 1)
                return False, retry_after

            window.append(now)
            return True, self._limit - len(window)

    async def prune(self) -> int:
        """Forget keys with no hits inside the window."""
        cutoff = self._clock() - self._window
        async with self._lock:
            stale = [key for key, dq in self._hits.items() if not dq or dq[-1] < cutoff]
            for key in stale:
                del self._hits[key]
        return len(stale)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiter keyed by client IP address.

    The client IP is taken from ``X-Forwarded-For`` by skipping
    *trusted_proxy_count* entries from the right; with no trusted
    proxies the direct peer address is used.
    """

    def __init__(
        self,
        app: object,
        max_requests_per_minute: int = 120,
        trusted_proxy_count: int = 1,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._limiter = SlidingWindowLimiter(max_requests_per_minute)
        self._trusted_proxy_count = trusted_proxy_count
        self._requests_seen = 0

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        self._requests_seen += 1
        if self._requests_seen % 1000 == 0:
            removed = await self._limiter.prune()
            logger.debug("rate_limit.pruned", removed=removed)

        client_ip = self._client_ip(request)
        allowed, value = await self._limiter.hit(client_ip)
        if not allowed:
            logger.warning("rate_limit.exceeded", client_ip=client_ip, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"error": "RATE_LIMITED", "retry_after_seconds": value},
                headers={"Retry-After": str(value), "X-RateLimit-Limit": str(self._limiter.limit)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(value)
        return response

    def _client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and self._trusted_proxy_count > 0:
            ips = [ip.strip() for ip in forwarded_for.split(",")]
            # No hop beyond the trusted proxies: the header is client-supplied.
            if len(ips) > self._trusted_proxy_count:
                return ips[-(self._trusted_proxy_count + 1)]
        if request.client:
            return request.client.host
        return "unknown"
