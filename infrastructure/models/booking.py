"""Event booking table, confirmed on completion and cancelled on refund."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from .base import Base


class EventBookingModel(Base):
    __tablename__ = "event_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(64),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(String(64), nullable=False, comment="活动ID")
    status = Column(String(20), nullable=False, default="pending", comment="pending/confirmed/cancelled")
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
