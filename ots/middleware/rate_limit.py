"""Per-client rate limiting for API endpoints."""

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ots.services.metrics import SecretMetrics
from ots.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PATHS = (
    "/health",
    "/metrics",
    "/api/health",
    "/api/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class SlidingWindowRateLimiter:
    """Sliding-window admission control keyed by client address.

    For each key the limiter keeps the timestamps of admitted requests inside
    the trailing window. A request is admitted while fewer than max_requests
    timestamps remain in the window.

    The map is guarded by a single lock held only for one admission check or
    one reap pass, never across I/O.
    """

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10000,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Admissions allowed per key per window
            window: Window length in seconds
            clock: Monotonic time source in seconds
            max_keys: Cap on tracked keys; least recently active keys are evicted
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.max_requests = max_requests
        self.window = window
        self.max_keys = max_keys
        self._clock = clock
        self._entries: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        while timestamps and now - timestamps[0] >= self.window:
            timestamps.popleft()

    def check(self, key: str) -> RateLimitDecision:
        """Record and judge one request for key."""
        with self._lock:
            now = self._clock()
            timestamps = self._entries.get(key)
            if timestamps is None:
                timestamps = deque()
                self._entries[key] = timestamps
                if len(self._entries) > self.max_keys:
                    self._evict_idle_keys(keep=key)
            else:
                self._prune(timestamps, now)

            if len(timestamps) >= self.max_requests:
                retry_after = max(1, math.ceil(self.window - (now - timestamps[0])))
                return RateLimitDecision(False, self.max_requests, 0, retry_after)

            timestamps.append(now)
            return RateLimitDecision(
                True, self.max_requests, self.max_requests - len(timestamps), 0
            )

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def _evict_idle_keys(self, keep: str) -> None:
        """Drop the least recently active keys beyond max_keys. Lock must be held."""
        overflow = len(self._entries) - self.max_keys
        candidates = sorted(
            (k for k in self._entries if k != keep),
            key=lambda k: self._entries[k][-1] if self._entries[k] else float("-inf"),
        )
        for stale in candidates[:overflow]:
            del self._entries[stale]
        logger.warning(
            f"Rate limiter exceeded max keys ({self.max_keys}), evicted {overflow} idle clients"
        )

    def reap(self) -> int:
        """Drop keys with no timestamps left in the window.

        Returns:
            Number of keys removed
        """
        with self._lock:
            now = self._clock()
            empty = []
            for key, timestamps in self._entries.items():
                self._prune(timestamps, now)
                if not timestamps:
                    empty.append(key)
            for key in empty:
                del self._entries[key]

        if empty:
            logger.debug(f"Reaped {len(empty)} idle rate limit entries")
        return len(empty)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects clients that exceed the sliding-window limit with 429."""

    def __init__(
        self,
        app,
        limiter: SlidingWindowRateLimiter,
        exempt_paths: tuple[str, ...] = DEFAULT_EXEMPT_PATHS,
        metrics: Optional[SecretMetrics] = None,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = exempt_paths
        self.metrics = metrics

    def _get_client_ip(self, request: Request) -> str:
        """Extract the client address, honouring reverse proxy headers."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        if request.client:
            return request.client.host

        return "unknown"

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(path) for path in self.exempt_paths):
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        decision = self.limiter.check(client_ip)

        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for IP: {sanitize_log_message(client_ip)} "
                f"on {request.method} {sanitize_log_message(request.url.path)}"
            )
            if self.metrics:
                self.metrics.rate_limit_rejections.inc()
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Please try again later."},
                headers={"Retry-After": str(decision.retry_after)},
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
