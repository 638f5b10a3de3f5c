"""
Replay/abuse guard: bounds inbound webhook volume per source.

Independent of idempotency; this limits request volume, not processing.
"""
from __future__ import annotations

from application.ports.rate_limiter import RateLimiter
from core.logging_config import get_logger
from domain.common.exceptions import RateLimitExceededError

logger = get_logger(__name__)


class ReplayGuard:

    def __init__(self, limiter: RateLimiter, limit: int, window_seconds: int):
        self._limiter = limiter
        self._limit = limit
        self._window = window_seconds

    async def check(self, source: str) -> None:
        decision = await self._limiter.hit(source or "unknown", self._limit, self._window)
        if not decision.allowed:
            logger.warning(
                "webhook_rate_limited",
                source=source,
                count=decision.count,
                limit=self._limit,
                retry_after=decision.retry_after,
            )
            raise RateLimitExceededError(retry_after=decision.retry_after)
