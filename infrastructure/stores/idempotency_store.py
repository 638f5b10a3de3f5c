"""
Idempotency store adapters.

Key layout: ``webhook:event:<event_id>`` -> ISO timestamp of processing,
expiring after the configured retention window. Keys are only removed by TTL.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict

from redis.exceptions import RedisError

from application.ports.idempotency import IdempotencyStoreUnavailable
from infrastructure.external.cache.redis_client import RedisClient

EVENT_KEY_PREFIX = "webhook:event:"


def event_key(event_id: str) -> str:
    return f"{EVENT_KEY_PREFIX}{event_id}"


class RedisIdempotencyStore:
    """SET NX EX on the shared Redis; failures surface as IdempotencyStoreUnavailable."""

    def __init__(self, redis: RedisClient):
        self._redis = redis

    async def exists(self, event_id: str) -> bool:
        try:
            return await self._redis.exists(event_key(event_id))
        except RedisError as exc:
            raise IdempotencyStoreUnavailable(str(exc)) from exc

    async def claim(self, event_id: str, ttl_seconds: int) -> bool:
        processed_at = datetime.now(timezone.utc).isoformat()
        try:
            return await self._redis.set(event_key(event_id), processed_at, ttl=ttl_seconds, nx=True)
        except RedisError as exc:
            raise IdempotencyStoreUnavailable(str(exc)) from exc


class InMemoryIdempotencyStore:
    """Process-local store for tests and single-instance development."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _purge(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]

    async def exists(self, event_id: str) -> bool:
        async with self._lock:
            self._purge(self._clock())
            return event_key(event_id) in self._entries

    async def claim(self, event_id: str, ttl_seconds: int) -> bool:
        async with self._lock:
            now = self._clock()
            self._purge(now)
            key = event_key(event_id)
            if key in self._entries:
                return False
            self._entries[key] = (datetime.now(timezone.utc).isoformat(), now + ttl_seconds)
            return True
