"""
Ports for out-of-order event deferral.

Attempt counts live in the shared TTL store so every service instance sees
the same number; scheduling hands the event id to the task queue.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


class DeferralTrackerUnavailable(Exception):
    """Raised when the shared attempt counter cannot be reached."""


@runtime_checkable
class DeferralTracker(Protocol):

    async def increment(self, event_id: str, ttl_seconds: int) -> int:
        """Bump and return the attempt counter for an event."""
        ...

    async def reset(self, event_id: str) -> None: ...


@runtime_checkable
class DeferralScheduler(Protocol):

    def schedule(self, event_id: str, delay_seconds: int) -> None: ...
