"""Shared rate limiting utilities using SlowAPI and its ``limits`` backend."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import get_settings

settings = get_settings()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limiting_enabled,
)


def rate_limit_handler(_: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": f"Rate limit exceeded: {exc.detail}"})


def apply_rate_limiter(app: FastAPI) -> None:
    """Attach the limiter middleware and exception handler to an app."""

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None


class RateLimitPolicy(Protocol):
    def check(self, key: str) -> RateLimitDecision: ...


class WindowRateLimitPolicy:
    """Moving-window limit per key, e.g. ``"10/hour"`` per user for booking attempts."""

    def __init__(self, rule: str, namespace: str, storage_uri: str = "memory://", enabled: bool = True) -> None:
        self.item = parse(rule)
        self.namespace = namespace
        self.enabled = enabled
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def check(self, key: str) -> RateLimitDecision:
        if not self.enabled:
            return RateLimitDecision(allowed=True)
        if self._strategy.hit(self.item, self.namespace, key):
            return RateLimitDecision(allowed=True)
        reset_at, _ = self._strategy.get_window_stats(self.item, self.namespace, key)
        return RateLimitDecision(allowed=False, retry_after=max(1, math.ceil(reset_at - time.time())))

    def reset(self) -> None:
        self._storage.reset()


booking_attempts = WindowRateLimitPolicy(
    settings.booking_rate_limit,
    namespace="booking-create",
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limiting_enabled,
)
