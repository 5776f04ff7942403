"""Per-source rate limiting for the webhook endpoint.

The counter store is injected: any ``limits`` storage works
(``memory://`` for tests and single-process runs, ``redis://`` when the
service runs on more than one instance). The budget is a sliding window:
every accepted request is timestamped and counts for exactly
``window_seconds``, so a source can never get more than ``max_requests``
through in any window, including across a window boundary. The storage
records entries atomically, so concurrent requests from one source can't
slip past the budget either.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Mapping

from limits import RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)

# Client IP headers, highest priority first (lowercase)
_CONNECTING_IP_HEADER = "cf-connecting-ip"
_REAL_IP_HEADER = "x-real-ip"
_FORWARDED_FOR_HEADER = "x-forwarded-for"


def client_ip(headers: Mapping[str, str]) -> str:
    """Resolve the caller's IP from proxy headers, or "unknown"."""
    connecting = (headers.get(_CONNECTING_IP_HEADER) or "").strip()
    if connecting:
        return connecting
    real = (headers.get(_REAL_IP_HEADER) or "").strip()
    if real:
        return real
    forwarded = headers.get(_FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return "unknown"


@dataclass
class RateLimitResult:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float | None = None) -> int:
        """Whole seconds until the window resets (at least 1)."""
        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset_at - now))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }


class RateLimiter:
    """Sliding-window request budget keyed by an arbitrary string."""

    def __init__(self, storage: Storage, max_requests: int, window_seconds: int):
        if max_requests < 1 or window_seconds < 1:
            raise ValueError("max_requests and window_seconds must be positive")
        self._strategy = MovingWindowRateLimiter(storage)
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    @classmethod
    def from_uri(cls, storage_uri: str, max_requests: int, window_seconds: int) -> RateLimiter:
        return cls(storage_from_string(storage_uri), max_requests, window_seconds)

    def check(self, key: str) -> RateLimitResult:
        """Count one request against key and report whether it is allowed."""
        allowed = self._strategy.hit(self._item, key)
        reset_at, remaining = self._strategy.get_window_stats(self._item, key)
        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, remaining),
            reset_at=float(reset_at),
        )

    def reset(self) -> None:
        """Clear all counters (tests and admin tooling)."""
        self._strategy.storage.reset()
