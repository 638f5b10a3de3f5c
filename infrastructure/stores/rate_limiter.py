"""
Sliding-window rate limiter adapters for the webhook replay/abuse guard.
"""
from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from typing import Callable, Deque, Dict

from redis.exceptions import RedisError

from application.ports.rate_limiter import RateLimitDecision
from core.logging_config import get_logger
from infrastructure.external.cache.redis_client import RedisClient

logger = get_logger(__name__)

RATE_LIMIT_KEY_PREFIX = "webhook:ratelimit:"


def _retry_after(oldest: float, now: float, window_seconds: int) -> int:
    return max(1, math.ceil(oldest + window_seconds - now))


class RedisSlidingWindowLimiter:
    """
    One sorted set per source; members are request markers scored by time.

    Admission control only: when Redis is unreachable the request is let
    through and a warning is logged.
    """

    def __init__(self, redis: RedisClient, clock: Callable[[], float] = time.time):
        self._redis = redis
        self._clock = clock

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        try:
            allowed, count, oldest = await self._redis.sliding_window_hit(
                f"{RATE_LIMIT_KEY_PREFIX}{key}", window_seconds, limit, now=now
            )
        except RedisError as exc:
            logger.warning("rate_limiter_unavailable_fail_open", source=key, error=str(exc))
            return RateLimitDecision(allowed=True, count=0)
        if allowed:
            return RateLimitDecision(allowed=True, count=count)
        return RateLimitDecision(
            allowed=False,
            count=count,
            retry_after=_retry_after(oldest, now, window_seconds),
        )


class InMemorySlidingWindowLimiter:
    """
    Deque of timestamps per key; expired markers are pruned on each hit and
    keys idle for a whole window are dropped once per window.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    def _drop_idle(self, now: float, window_seconds: int) -> None:
        cutoff = now - window_seconds
        for key in [k for k, markers in self._hits.items() if not markers or markers[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= window_seconds:
                self._drop_idle(now, window_seconds)
            markers = self._hits.setdefault(key, deque())
            while markers and markers[0] <= now - window_seconds:
                markers.popleft()
            if len(markers) >= limit:
                return RateLimitDecision(
                    allowed=False,
                    count=len(markers),
                    retry_after=_retry_after(markers[0], now, window_seconds),
                )
            markers.append(now)
            return RateLimitDecision(allowed=True, count=len(markers))
