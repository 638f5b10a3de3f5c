"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import Order, OrderItem, OrderStatus, ProductKind, ProductRef
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            user_id=model.user_id,
            status=OrderStatus(model.status),
            total_amount=model.total_amount,
            currency=model.currency,
            payment_reference=model.payment_reference,
            items=[self._item_to_entity(item) for item in model.items],
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
            refunded_at=model.refunded_at,
        )

    @staticmethod
    def _item_to_entity(model: OrderItemModel) -> OrderItem:
        return OrderItem(
            id=model.id,
            order_id=model.order_id,
            product_ref=ProductRef(kind=ProductKind(model.product_kind), product_id=model.product_id),
            title=model.title,
            price_at_purchase=model.price_at_purchase,
            quantity=model.quantity,
            finalized_at=model.finalized_at,
        )

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """
        获取并锁定订单行（PostgreSQL: SELECT ... FOR UPDATE）

        populate_existing 保证同一会话内重复读取时拿到锁定后的最新状态。
        """
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def compare_and_set_status(
        self,
        order: Order,
        expected: tuple[OrderStatus, ...],
    ) -> bool:
        """以持久化状态为条件的 UPDATE；rowcount 为 0 说明状态已被并发修改"""
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order.id)
            .where(OrderModel.status.in_([s.value for s in expected]))
            .values(
                status=order.status.value,
                payment_reference=order.payment_reference,
                failure_reason=order.failure_reason,
                completed_at=order.completed_at,
                refunded_at=order.refunded_at,
                updated_at=order.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def finalize_items(self, order: Order) -> int:
        """只写入尚未定稿的明细，已定稿的行保持不变"""
        finalized_at = order.completed_at or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(OrderItemModel)
            .where(OrderItemModel.order_id == order.id)
            .where(OrderItemModel.finalized_at.is_(None))
            .values(finalized_at=finalized_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
