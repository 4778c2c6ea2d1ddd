from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from booking_api.booking.redirects import RedirectResolver
from booking_api.core.config import get_settings
from booking_api.metrics import observe_rate_limited
from booking_api.middleware.correlation_id import resolve_client_address


logger = logging.getLogger("booking_api.rate_limit")

RATE_LIMITED_MESSAGE = "Too many requests. Please wait a moment and try the link again."


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class _TokenBucketLimiter:
    """Token buckets keyed by (client address, route group), least recently used first.

    A bucket idle for a whole window has refilled and carries no state, so it is
    dropped. ``max_buckets`` caps memory when many addresses arrive at once.
    """

    def __init__(self, max_buckets: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._buckets: OrderedDict[tuple[str, str], _BucketState] = OrderedDict()
        self._clock = clock
        self.max_buckets = max_buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def take(self, client_address: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = self._clock()
        refill_rate = capacity / float(window_seconds)
        key = (client_address, route_group)

        with self._lock:
            self._prune(now, window_seconds)
            current = self._buckets.get(key)
            if current is None:
                current = _BucketState(tokens=float(capacity), last_refill=now)
                self._buckets[key] = current
                while len(self._buckets) > self.max_buckets:
                    self._buckets.popitem(last=False)
            else:
                self._buckets.move_to_end(key)

            elapsed = max(0.0, now - current.last_refill)
            current.tokens = min(float(capacity), current.tokens + (elapsed * refill_rate))
            current.last_refill = now

            if current.tokens < 1.0:
                retry_after = max(1, math.ceil((1.0 - current.tokens) / refill_rate))
                return False, retry_after

            current.tokens -= 1.0
            return True, 0

    def _prune(self, now: float, window_seconds: int) -> None:
        while self._buckets:
            key, oldest = next(iter(self._buckets.items()))
            if now - oldest.last_refill < window_seconds:
                return
            del self._buckets[key]

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()


class PublicActionRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-address limiter for the unauthenticated approve/reject links."""

    path_prefix = "/actions"

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_address = getattr(request.state, "client_address", None) or resolve_client_address(request)
        route_group = _resolve_route_group(request.url.path)
        _limiter.max_buckets = settings.rate_limit_max_tracked_clients
        allowed, retry_after = _limiter.take(
            client_address=client_address,
            route_group=route_group,
            capacity=settings.rate_limit_public_actions_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        observe_rate_limited(route_group)
        logger.warning("public_action.rate_limited", extra={"path": request.url.path, "action": route_group})
        resolver = RedirectResolver(settings.public_pages_base_url)
        response = RedirectResponse(resolver.error(RATE_LIMITED_MESSAGE), status_code=303)
        response.headers["Retry-After"] = str(retry_after)
        return response


def _resolve_route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "actions"
    return parts[1]


def reset_rate_limiter() -> None:
    _limiter.clear()
