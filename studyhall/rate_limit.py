"""Sliding-window rate limiting.

Two stores share one interface: an in-process store (default, per worker) and
a Redis sorted-set store for deployments running several workers. The store
lives on ``app.state.rate_limit_store`` and is created in the app lifespan.
"""
import logging
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from fastapi import Request

from studyhall.exceptions import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class MemoryRateLimitStore:
    """Per-process sliding windows.

    Keys whose window has passed are dropped on their next hit, and every
    ``sweep_interval`` seconds all stale keys are swept, so caller-chosen
    identifiers cannot grow the map without bound.
    """

    def __init__(self, clock=time.monotonic, sweep_interval: float = 60):
        self._hits: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, float] = {}
        self._clock = clock
        self.sweep_interval = sweep_interval
        self._last_sweep = clock()

    def __len__(self):
        return len(self._hits)

    async def hit(self, key: str, limit: int, window: float) -> RateLimitResult:
        now = self._clock()
        if now - self._last_sweep >= self.sweep_interval:
            self.sweep(now)

        hits = self._hits.get(key)
        if hits is not None:
            self._prune(hits, now, window)

        if hits and len(hits) >= limit:
            retry_after = max(1, math.ceil(hits[0] + window - now))
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        if not hits:
            hits = self._hits[key] = deque()
        self._windows[key] = window
        hits.append(now)
        return RateLimitResult(allowed=True, remaining=limit - len(hits))

    def sweep(self, now: Optional[float] = None):
        now = self._clock() if now is None else now
        for key in list(self._hits):
            hits = self._hits[key]
            self._prune(hits, now, self._windows.get(key, 0))
            if not hits:
                del self._hits[key]
                self._windows.pop(key, None)
        self._last_sweep = now

    @staticmethod
    def _prune(hits: Deque[float], now: float, window: float):
        while hits and hits[0] <= now - window:
            hits.popleft()

    def clear(self):
        self._hits.clear()
        self._windows.clear()


class RedisRateLimitStore:
    def __init__(self, client, prefix: str = "ratelimit:", clock=time.time):
        self.client = client
        self.prefix = prefix
        self._clock = clock

    async def hit(self, key: str, limit: int, window: float) -> RateLimitResult:
        now = self._clock()
        redis_key = f"{self.prefix}{key}"

        await self.client.zremrangebyscore(redis_key, 0, now - window)
        count = await self.client.zcard(redis_key)

        if count >= limit:
            oldest = await self.client.zrange(redis_key, 0, 0, withscores=True)
            oldest_score = oldest[0][1] if oldest else now
            retry_after = max(1, math.ceil(oldest_score + window - now))
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        await self.client.zadd(redis_key, {f"{now}:{uuid.uuid4().hex}": now})
        await self.client.expire(redis_key, math.ceil(window))
        return RateLimitResult(allowed=True, remaining=limit - count - 1)

    async def close(self):
        await self.client.aclose()


class RateLimiter:
    def __init__(self, scope: str, max_requests: int, window_seconds: float, message: Optional[str] = None):
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message

    async def hit(self, request: Request, identifier: str):
        store = request.app.state.rate_limit_store
        key = f"{self.scope}:{identifier}"
        result = await store.hit(key, self.max_requests, self.window_seconds)
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s", key)
            raise RateLimited(self.message, retry_after=result.retry_after)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


login_limiter = RateLimiter(
    "auth", max_requests=5, window_seconds=15 * 60,
    message="Too many login attempts. Please try again in 15 minutes.",
)
signup_limiter = RateLimiter(
    "signup", max_requests=3, window_seconds=60 * 60,
    message="Too many accounts created. Please try again later.",
)
posting_limiter = RateLimiter(
    "post", max_requests=10, window_seconds=60,
    message="You are posting too quickly. Please slow down.",
)
friend_request_limiter = RateLimiter(
    "friend-request", max_requests=20, window_seconds=60 * 60,
    message="Too many friend requests. Please try again later.",
)
