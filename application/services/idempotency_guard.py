"""
Idempotency guard for gateway events.

Policy is claim-after-commit: the pipeline checks before processing and
claims only once the order transaction has committed. Two concurrent
deliveries may both pass the check; the orchestrator's compare-and-swap on
the order status turns the loser into a no-op.

When the store is unavailable the guard fails open and logs at critical
severity. The order state check remains as the second line of defense.
"""
from __future__ import annotations

from dataclasses import dataclass

from application.ports.idempotency import IdempotencyStore, IdempotencyStoreUnavailable
from core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IdempotencyCheck:
    already_processed: bool
    store_available: bool = True


class IdempotencyGuard:

    def __init__(self, store: IdempotencyStore, ttl_seconds: int):
        self._store = store
        self._ttl = ttl_seconds

    async def check(self, event_id: str) -> IdempotencyCheck:
        try:
            seen = await self._store.exists(event_id)
        except IdempotencyStoreUnavailable as exc:
            logger.critical("idempotency_store_unavailable_fail_open", event_id=event_id, op="check", error=str(exc))
            return IdempotencyCheck(already_processed=False, store_available=False)
        return IdempotencyCheck(already_processed=seen)

    async def check_and_claim(self, event_id: str) -> IdempotencyCheck:
        """Atomic conditional set; ``already_processed`` is True iff the key existed."""
        try:
            claimed = await self._store.claim(event_id, self._ttl)
        except IdempotencyStoreUnavailable as exc:
            logger.critical("idempotency_store_unavailable_fail_open", event_id=event_id, op="claim", error=str(exc))
            return IdempotencyCheck(already_processed=False, store_available=False)
        return IdempotencyCheck(already_processed=not claimed)
