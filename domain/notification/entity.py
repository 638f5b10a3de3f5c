"""
通知任务实体 - 提交后异步投递的副作用（确认邮件、失败通知、退款通知、运营告警）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class NotificationKind(str, Enum):
    CONFIRMATION = "confirmation"
    FAILURE = "failure"
    REFUND = "refund"
    OPERATOR_ALERT = "operator_alert"


class NotificationStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    DEAD_LETTERED = "dead_lettered"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class NotificationJob:
    """
    One outbound notification about an order.

    (order_id, kind, dedupe_key) is unique; `dedupe_key` is usually the
    gateway event id, so a re-delivered event cannot queue the same notice
    twice.

    `submitted_at` records the last hand-off to the task queue (or the last
    scheduled retry); `locked_until` is the lease a worker holds while sending.
    """

    id: Optional[int]
    order_id: str
    kind: NotificationKind
    dedupe_key: str
    status: NotificationStatus = NotificationStatus.QUEUED
    attempts: int = 0
    payload: dict = field(default_factory=dict)
    last_error: Optional[str] = None
    submitted_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.submitted_at = _ensure_utc(self.submitted_at)
        self.locked_until = _ensure_utc(self.locked_until)

    def record_attempt(self, error: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc)
        self.attempts += 1
        self.last_error = error
        self.locked_until = None
        self.updated_at = now

    def schedule_retry(self, at: datetime) -> None:
        # A pending retry counts as a fresh submission for the resubmit sweep
        self.submitted_at = at

    def mark_sent(self) -> None:
        self.status = NotificationStatus.SENT
        self.last_error = None
        self.locked_until = None
        self.updated_at = datetime.now(timezone.utc)

    def mark_dead_lettered(self, error: Optional[str]) -> None:
        self.status = NotificationStatus.DEAD_LETTERED
        self.last_error = error
        self.locked_until = None
        self.updated_at = datetime.now(timezone.utc)

    @property
    def is_final(self) -> bool:
        return self.status in (NotificationStatus.SENT, NotificationStatus.DEAD_LETTERED)
