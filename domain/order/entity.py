"""
订单领域实体 - 订单聚合根

Order lifecycle driven by payment gateway events:

    pending -> processing -> completed -> refunded
    pending | processing -> failed

`processing` is written by checkout before the gateway answers; webhooks
only move an order on to completed, failed or refunded.

Every other edge is illegal. Entities only validate transitions; the
repository applies them with a compare-and-swap on the persisted status.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "pending"           # 待支付
    PROCESSING = "processing"     # 支付处理中
    COMPLETED = "completed"       # 已完成
    FAILED = "failed"             # 支付失败
    REFUNDED = "refunded"         # 已退款


# target -> allowed predecessors
ORDER_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PROCESSING: (OrderStatus.PENDING,),
    OrderStatus.COMPLETED: (OrderStatus.PENDING, OrderStatus.PROCESSING),
    OrderStatus.FAILED: (OrderStatus.PENDING, OrderStatus.PROCESSING),
    OrderStatus.REFUNDED: (OrderStatus.COMPLETED,),
}


class ProductKind(str, Enum):
    COURSE = "course"
    EVENT = "event"
    DIGITAL_PRODUCT = "digital_product"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class ProductRef:
    """Identifies a purchasable thing: a course, an event or a digital product."""

    kind: ProductKind
    product_id: str

    def __post_init__(self):
        if not self.product_id:
            raise DomainValidationException("product_id must not be empty", field="product_id")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.product_id}"


@dataclass
class OrderItem:
    """
    订单明细 - Order 聚合的一部分

    订单完成后不可变（finalized_at 非空）。
    """

    id: Optional[int]
    order_id: str
    product_ref: ProductRef
    title: str
    price_at_purchase: Decimal
    quantity: int = 1
    finalized_at: Optional[datetime] = None

    def __post_init__(self):
        if self.price_at_purchase < 0:
            raise DomainValidationException(
                f"price_at_purchase must not be negative: {self.price_at_purchase}",
                field="price_at_purchase",
            )
        if self.quantity < 1:
            raise DomainValidationException(f"quantity must be positive: {self.quantity}", field="quantity")
        self.finalized_at = _ensure_utc(self.finalized_at)

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 状态转换必须遵循状态机，且只从期望的前置状态发生
    2. 完成时记录支付渠道引用（payment_reference）
    3. 订单与明细属于财务记录，退款后保留，不可删除
    """

    id: str
    user_id: Optional[str]
    status: OrderStatus
    total_amount: Decimal
    currency: str = "USD"
    payment_reference: Optional[str] = None
    items: list[OrderItem] = field(default_factory=list)
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total_amount < 0:
            raise DomainValidationException(
                f"total_amount must not be negative: {self.total_amount}",
                field="total_amount",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    @staticmethod
    def predecessors_of(target: OrderStatus) -> tuple[OrderStatus, ...]:
        return ORDER_TRANSITIONS.get(target, ())

    def can_transition_to(self, target: OrderStatus) -> bool:
        return self.status in self.predecessors_of(target)

    def is_in(self, *statuses: OrderStatus) -> bool:
        return self.status in statuses

    def _transition(self, target: OrderStatus) -> datetime:
        if not self.can_transition_to(target):
            raise DomainValidationException(
                f"Illegal order transition {self.status.value} -> {target.value}",
                field="status",
            )
        now = datetime.now(timezone.utc)
        self.status = target
        self.updated_at = now
        return now

    def mark_completed(self, payment_reference: Optional[str]) -> None:
        now = self._transition(OrderStatus.COMPLETED)
        if payment_reference:
            self.payment_reference = payment_reference
        self.completed_at = now
        self.failure_reason = None
        for item in self.items:
            if item.finalized_at is None:
                item.finalized_at = now

    def mark_failed(self, reason: Optional[str] = None) -> None:
        self._transition(OrderStatus.FAILED)
        self.failure_reason = reason

    def mark_refunded(self) -> None:
        self.refunded_at = self._transition(OrderStatus.REFUNDED)
