"""Access grant (course enrollment / product entitlement) table."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from .base import Base


class AccessGrantModel(Base):
    """ORM mapping for access_grants table."""

    __tablename__ = "access_grants"
    __table_args__ = (
        # Last line of defense against double-granting when idempotency fails open.
        UniqueConstraint("user_id", "product_kind", "product_id", name="uq_access_grants_user_product"),
        Index("ix_access_grants_order", "order_id"),
        {
            "comment": "访问授权表，记录用户对课程/活动/数字产品的访问权",
        },
    )

    id = Column(Integer, primary_key=True, autoincrement=True, comment="主键ID")
    order_id = Column(
        String(64),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        comment="授予该权限的订单ID",
    )
    user_id = Column(String(64), nullable=False, comment="用户ID")
    product_kind = Column(String(20), nullable=False, comment="商品类型")
    product_id = Column(String(64), nullable=False, comment="商品ID")
    granted_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="授予时间",
    )
    revoked_at = Column(DateTime(timezone=True), nullable=True, comment="撤销时间（退款）")
