"""
Idempotency store port.

The store holds one key per applied gateway event; adapters must make the
check-and-mark write a single atomic operation (conditional set with TTL).
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


class IdempotencyStoreUnavailable(Exception):
    """Raised by adapters when the backing store cannot be reached."""


@runtime_checkable
class IdempotencyStore(Protocol):

    async def exists(self, event_id: str) -> bool: ...

    async def claim(self, event_id: str, ttl_seconds: int) -> bool:
        """Atomically mark the event processed; False if it already was."""
        ...
