"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, comment="订单ID（即支付网关的 client_reference_id）")
    user_id = Column(String(64), nullable=True, index=True, comment="下单用户ID")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="订单状态: pending/processing/completed/failed/refunded"
    )
    payment_reference = Column(String(200), nullable=True, index=True, comment="支付渠道的支付ID")

    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单金额")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<OrderModel(id='{self.id}', user_id='{self.user_id}', status='{self.status}')>"


class OrderItemModel(Base):
    """订单明细：财务记录，订单完成后不可修改"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(64),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="所属订单ID"
    )
    product_kind = Column(String(20), nullable=False, comment="商品类型: course/event/digital_product")
    product_id = Column(String(64), nullable=False, comment="商品ID")
    title = Column(String(255), nullable=False, default="", comment="下单时的商品标题")
    price_at_purchase = Column(Numeric(precision=15, scale=2), nullable=False, comment="成交单价")
    quantity = Column(Integer, nullable=False, default=1, comment="数量")
    finalized_at = Column(DateTime(timezone=True), nullable=True, comment="定稿时间（订单完成时写入）")

    order = relationship("OrderModel", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_product", "product_kind", "product_id"),
    )
