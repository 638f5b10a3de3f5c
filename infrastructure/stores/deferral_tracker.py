"""
Shared attempt counters for deferred (out-of-order) webhook events.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict

from redis.exceptions import RedisError

from application.ports.deferral import DeferralTrackerUnavailable
from infrastructure.external.cache.redis_client import RedisClient

DEFERRAL_KEY_PREFIX = "webhook:deferral:"


class RedisDeferralTracker:
    """INCR + EXPIRE so every instance sees one attempt count per event."""

    def __init__(self, redis: RedisClient):
        self._redis = redis

    async def increment(self, event_id: str, ttl_seconds: int) -> int:
        try:
            return await self._redis.incr(f"{DEFERRAL_KEY_PREFIX}{event_id}", ttl=ttl_seconds)
        except RedisError as exc:
            raise DeferralTrackerUnavailable(str(exc)) from exc

    async def reset(self, event_id: str) -> None:
        try:
            await self._redis.delete(f"{DEFERRAL_KEY_PREFIX}{event_id}")
        except RedisError as exc:
            raise DeferralTrackerUnavailable(str(exc)) from exc


class InMemoryDeferralTracker:

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counts: Dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def increment(self, event_id: str, ttl_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            count, expires = self._counts.get(event_id, (0, 0.0))
            if expires <= now:
                count = 0
            count += 1
            self._counts[event_id] = (count, now + ttl_seconds)
            return count

    async def reset(self, event_id: str) -> None:
        async with self._lock:
            self._counts.pop(event_id, None)
