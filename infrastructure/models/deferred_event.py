"""Out-of-order webhook events parked for delayed reprocessing."""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from .base import Base


class DeferredWebhookEventModel(Base):
    __tablename__ = "deferred_webhook_events"
    __table_args__ = (
        Index("ix_deferred_events_order_status", "order_id", "status"),
        Index("ix_deferred_events_due", "status", "next_attempt_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(128), nullable=False, unique=True, comment="网关事件ID")
    order_id = Column(String(64), nullable=False)
    event_type = Column(String(64), nullable=False, comment="网关事件类型")
    payload = Column(JSON, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending", comment="pending/resolved/dead_lettered")
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_reason = Column(Text, nullable=True)
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
