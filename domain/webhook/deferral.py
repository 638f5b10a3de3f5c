"""
Out-of-order events held back for reprocessing.

A refund can reach us before the completion it refers to; such events are
parked here with a backoff schedule instead of being applied or dropped.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class DeferredStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class DeferredEvent:
    id: Optional[int]
    event_id: str
    order_id: str
    event_type: str
    payload: dict = field(default_factory=dict)
    attempts: int = 0
    status: DeferredStatus = DeferredStatus.PENDING
    next_attempt_at: Optional[datetime] = None
    last_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def resolve(self) -> None:
        self.status = DeferredStatus.RESOLVED
        self.next_attempt_at = None
        self.updated_at = datetime.now(timezone.utc)

    def dead_letter(self, reason: str) -> None:
        self.status = DeferredStatus.DEAD_LETTERED
        self.last_reason = reason
        self.next_attempt_at = None
        self.updated_at = datetime.now(timezone.utc)


class DeferredEventRepository(ABC):

    @abstractmethod
    async def get_by_event_id(self, event_id: str) -> Optional[DeferredEvent]:
        pass

    @abstractmethod
    async def save(self, deferred: DeferredEvent) -> DeferredEvent:
        """按 event_id 新建或更新"""
        pass

    @abstractmethod
    async def list_pending_for_order(self, order_id: str) -> List[DeferredEvent]:
        pass

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[DeferredEvent]:
        pass
