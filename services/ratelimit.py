"""
services/ratelimit.py -- Sliding-window rate limiting for application code.

slowapi (api/limiter.py) covers per-IP limits declared on routes. This module
covers limits keyed by something the route decides at runtime -- a user id,
a team id, an email address -- using the same `limits` library slowapi is
built on, with the moving-window strategy.

The storage is shared across processes when RATELIMIT_STORAGE_URI points at
Redis. When it is empty there is nothing to count against, and ratelimit()
returns None: callers treat that as "no limiting" rather than an error.

Usage:
    limiter = request.app.state.rate_limits.ratelimit(3, "1 h")
    if limiter is not None and not limiter.hit(f"email-change:{user.id}").success:
        raise HTTPException(429, ...)
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Optional

from limits import parse
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger("docroom.ratelimit")

_PREFIX = "docroom"

_UNITS = {"s": "second", "m": "minute", "h": "hour", "d": "day"}
_WINDOW_RE = re.compile(r"^\s*(\d+)\s*(ms|[smhd])\s*$")


def window_to_limit(requests: int, window: str) -> str:
    """Translate ("10", "10 s") into the limits notation "10 per 10 second".

    Milliseconds round up to whole seconds, the finest granularity the
    storage backends count in. Raises ValueError for an unknown unit or
    malformed window.
    """
    match = _WINDOW_RE.match(window)
    if not match or requests < 1 or int(match.group(1)) < 1:
        raise ValueError(f"Invalid rate limit window: {requests} per {window!r}")
    amount, unit = match.groups()
    if unit == "ms":
        amount, unit = str(max(1, math.ceil(int(amount) / 1000))), "s"
    return f"{requests} per {amount} {_UNITS[unit]}"


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds when the oldest hit leaves the window


class SlidingWindowLimiter:
    """A fixed request budget over a trailing window."""

    def __init__(self, strategy: MovingWindowRateLimiter, requests: int, window: str) -> None:
        self._strategy = strategy
        self._item = parse(window_to_limit(requests, window))
        self.requests = requests
        self.window = window

    def hit(self, identifier: str) -> RateLimitResult:
        """Count one request for identifier and report whether it is allowed."""
        allowed = self._strategy.hit(self._item, _PREFIX, identifier)
        stats = self._strategy.get_window_stats(self._item, _PREFIX, identifier)
        return RateLimitResult(
            success=allowed,
            limit=self.requests,
            remaining=stats.remaining,
            reset=stats.reset_time,
        )

    def retry_after(self, result: RateLimitResult) -> int:
        return max(1, int(result.reset - time.time()))


class RateLimits:
    """Builds SlidingWindowLimiter instances over one shared storage backend."""

    def __init__(self, storage_uri: str = "") -> None:
        self._storage: Optional[Storage] = storage_from_string(storage_uri) if storage_uri else None
        self._strategy = MovingWindowRateLimiter(self._storage) if self._storage is not None else None
        if self._storage is None:
            logger.info("Rate limit storage not configured -- application rate limits disabled")

    @property
    def enabled(self) -> bool:
        return self._strategy is not None

    def ratelimit(self, requests: int = 10, window: str = "10 s") -> Optional[SlidingWindowLimiter]:
        """Return a limiter allowing `requests` per `window`, or None when disabled.

        Default: 10 requests per 10 seconds. Window units: ms, s, m, h, d.
        """
        if self._strategy is None:
            return None
        return SlidingWindowLimiter(self._strategy, requests, window)

    def reset(self) -> None:
        """Clear every counter. Only meaningful for tests on memory:// storage."""
        if self._storage is not None:
            self._storage.reset()
