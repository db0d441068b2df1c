"""Middleware for the one-time secret service."""

from ots.middleware.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter

__all__ = ["RateLimitMiddleware", "SlidingWindowRateLimiter"]
