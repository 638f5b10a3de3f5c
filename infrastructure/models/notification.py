"""Notification jobs queued after an order transaction commits."""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from .base import Base


class NotificationJobModel(Base):
    __tablename__ = "notification_jobs"
    __table_args__ = (
        UniqueConstraint("order_id", "kind", "dedupe_key", name="uq_notification_jobs_dedupe"),
        Index("ix_notification_jobs_status", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    # No FK: notifications may reference orders during dead-letter alerts for unknown ids.
    order_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(32), nullable=False, comment="confirmation/failure/refund/operator_alert")
    dedupe_key = Column(String(128), nullable=False, comment="通常为网关事件ID")
    status = Column(String(20), nullable=False, default="queued", comment="queued/sent/dead_lettered")
    attempts = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次提交到任务队列的时间")
    locked_until = Column(DateTime(timezone=True), nullable=True, comment="投递租约到期时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
