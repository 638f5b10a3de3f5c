"""Cart snapshot table; rows are cleared when the user's order completes."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String, UniqueConstraint

from .base import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_kind", "product_id", name="uq_cart_items_user_product"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")
    product_kind = Column(String(20), nullable=False, comment="商品类型")
    product_id = Column(String(64), nullable=False, comment="商品ID")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="加入购物车时的单价")
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
