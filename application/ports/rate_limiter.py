"""
Rate limiter port used by the replay/abuse guard.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


@runtime_checkable
class RateLimiter(Protocol):

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision: ...
