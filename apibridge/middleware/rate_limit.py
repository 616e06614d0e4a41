"""Fixed window rate limiting for the ``pre`` stage, backed by ``limits``."""

import logging
from typing import Any, Callable, Dict, Optional

from limits import RateLimitItem, RateLimitItemPerSecond, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from ..core.models import MiddlewareContext

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    def __init__(self, message: str, limit: int, reset: float):
        super().__init__(message)
        self.limit = limit
        self.reset = reset


def default_key(context: MiddlewareContext) -> str:
    """Client IP, then user id, then 'anonymous'."""
    ip = context.metadata.get("ip") or context.request.headers.get("x-forwarded-for")
    if ip:
        return str(ip)
    user = context.user
    user_id = user.get("id") if isinstance(user, dict) else getattr(user, "id", None)
    if user_id is not None:
        return f"user:{user_id}"
    return "anonymous"


class RateLimit:
    """
    Fixed window limiter keyed per caller.

    The budget is either ``max_requests`` per ``window_seconds`` or a limit
    string such as ``"100/minute"``. Counters live in a ``limits`` storage
    (in memory by default), which expires finished windows on its own.

    Every call writes ``metadata["rateLimit"]`` with the limit, the remaining
    budget and the window reset time (epoch seconds).
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
        key_generator: Optional[Callable[[MiddlewareContext], str]] = None,
        message: str = "Too many requests",
        limit: Optional[str] = None,
        storage: Optional[Storage] = None,
    ):
        if limit is not None:
            self.item: RateLimitItem = parse(limit)
        else:
            if max_requests <= 0:
                raise ValueError("max_requests must be positive")
            if window_seconds <= 0:
                raise ValueError("window_seconds must be positive")
            self.item = RateLimitItemPerSecond(max_requests, int(window_seconds))
        self.key_generator = key_generator or default_key
        self.message = message
        self.storage = storage or MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self.storage)

    @property
    def max_requests(self) -> int:
        return self.item.amount

    @property
    def window_seconds(self) -> int:
        return self.item.get_expiry()

    def get_window(self, key: str) -> Dict[str, Any]:
        """Limit, remaining budget and reset time for one caller key."""
        stats = self._limiter.get_window_stats(self.item, key)
        return {
            "limit": self.item.amount,
            "remaining": max(0, stats.remaining),
            "reset": stats.reset_time,
        }

    def check(self, context: MiddlewareContext) -> None:
        """
        Count one call against the caller's window.

        Raises:
            RateLimitExceeded: If the window budget is spent
        """
        key = self.key_generator(context)
        allowed = self._limiter.hit(self.item, key)
        window = self.get_window(key)
        context.metadata["rateLimit"] = window
        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}")
            raise RateLimitExceeded(self.message, window["limit"], window["reset"])

    def middleware(self) -> Callable[[MiddlewareContext], Any]:
        """Return a handler suitable for the ``pre`` stage."""

        def rate_limit(context: MiddlewareContext) -> None:
            self.check(context)

        return rate_limit

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one caller's window, or every window."""
        if key is None:
            self.storage.reset()
        else:
            self._limiter.clear(self.item, key)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "limit": str(self.item),
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "storage": type(self.storage).__name__,
        }
