"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order, OrderStatus


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单（含明细）"""
        pass

    @abstractmethod
    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """获取订单并锁定该行直到事务结束"""
        pass

    @abstractmethod
    async def compare_and_set_status(
        self,
        order: Order,
        expected: tuple[OrderStatus, ...],
    ) -> bool:
        """
        仅当持久化状态属于 expected 时写入 order 的新状态及相关字段。

        Returns:
            True 表示本次写入生效；False 表示状态已被其他事务改变（no-op）
        """
        pass

    @abstractmethod
    async def finalize_items(self, order: Order) -> int:
        """为订单明细写入 finalized_at，返回受影响行数"""
        pass
