"""
api/limiter.py -- Per-client fixed-window rate limiting for two traffic classes.

RateLimiter wraps the `limits` engine that slowapi is built on. It is created
once in the lifespan and stored on app.state.rate_limiter, so every route
shares one counter store and tests can inject their own instance.

Semantics of admit(client_id, traffic_class):
  - the window for (traffic_class, client_id) starts on its first hit and
    lasts window_seconds; once it elapses the count starts again from 0
  - every call increments the count, then allowed = count <= limit
  - the storage backend increments under its own lock, so concurrent bursts
    from one client can never overshoot the ceiling

Classes:
  general -- every /api route except /api/health (default 100 / 15 min)
  auth    -- login and registration on top of general (default 20 / 15 min)

Counters live in process memory by default and are lost on restart. This is
a best-effort throttle, not a security boundary.
"""

from __future__ import annotations

import logging
import math
import time
from enum import Enum

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

from auth.errors import RateLimitError
from core.config import Settings

logger = logging.getLogger("bankauth.limiter")


class TrafficClass(str, Enum):
    GENERAL = "general"
    AUTH = "auth"


class RateLimiter:
    """Injectable fixed-window limiter keyed by (traffic class, client id).

    Usage:
        limiter = RateLimiter({TrafficClass.AUTH: (20, 900)})
        if not limiter.admit("203.0.113.7", TrafficClass.AUTH):
            ...  # reject with 429
    """

    def __init__(self, limits: dict[TrafficClass, tuple[int, int]], storage_uri: str = "memory://") -> None:
        self._items = {
            TrafficClass(cls): RateLimitItemPerSecond(amount, window_seconds)
            for cls, (amount, window_seconds) in limits.items()
        }
        self._windows = {TrafficClass(cls): window_seconds for cls, (_amount, window_seconds) in limits.items()}
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        window = settings.rate_limit_window_seconds
        return cls(
            {
                TrafficClass.GENERAL: (settings.general_rate_limit, window),
                TrafficClass.AUTH: (settings.auth_rate_limit, window),
            },
            storage_uri=settings.rate_limit_storage_uri,
        )

    def admit(self, client_id: str, traffic_class: TrafficClass) -> bool:
        """Count one request and report whether it is within the class ceiling."""
        item = self._items[TrafficClass(traffic_class)]
        return self._strategy.hit(item, TrafficClass(traffic_class).value, client_id)

    def retry_after(self, client_id: str, traffic_class: TrafficClass) -> int:
        """Seconds until the client's current window for this class ends (at least 1)."""
        item = self._items[TrafficClass(traffic_class)]
        reset_time = self._strategy.get_window_stats(item, TrafficClass(traffic_class).value, client_id)[0]
        return max(1, math.ceil(reset_time - time.time()))

    def window_seconds(self, traffic_class: TrafficClass) -> int:
        return self._windows[TrafficClass(traffic_class)]

    def reset(self) -> None:
        """Forget every counter. Used between tests."""
        self._storage.reset()


# ---------------------------------------------------------------------------
# FastAPI dependencies
#
# Listed in router dependencies in this order: general first, then auth. A
# request refused by the general gate raises before the auth gate runs, so it
# never touches the auth counter and never reaches a route handler.
# ---------------------------------------------------------------------------


def _rejection_message(limiter: RateLimiter, traffic_class: TrafficClass) -> str:
    if traffic_class is TrafficClass.AUTH:
        minutes = max(1, limiter.window_seconds(traffic_class) // 60)
        return f"Too many authentication attempts, please try again in {minutes} minutes"
    return "Too many requests, please try again later"


def _enforce(request: Request, traffic_class: TrafficClass) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    client_id = get_remote_address(request)
    if limiter.admit(client_id, traffic_class):
        return
    logger.warning(
        "Rate limit exceeded class=%s ip=%s path=%s",
        traffic_class.value,
        client_id,
        request.url.path,
    )
    raise RateLimitError(
        traffic_class.value,
        _rejection_message(limiter, traffic_class),
        limiter.retry_after(client_id, traffic_class),
    )


def enforce_general_limit(request: Request) -> None:
    _enforce(request, TrafficClass.GENERAL)


def enforce_auth_limit(request: Request) -> None:
    _enforce(request, TrafficClass.AUTH)
