"""Middleware pipeline and built-in handlers."""

from .auth import ApiKeyAuth
from .rate_limit import RateLimit, RateLimitExceeded
from .runner import MiddlewareRunner

__all__ = ["ApiKeyAuth", "MiddlewareRunner", "RateLimit", "RateLimitExceeded"]
