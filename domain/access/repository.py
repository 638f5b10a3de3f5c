"""
访问授权仓储接口
"""
from abc import ABC, abstractmethod
from typing import List

from domain.order.entity import ProductRef
from .entity import AccessGrant


class AccessGrantRepository(ABC):

    @abstractmethod
    async def grant(self, user_id: str, product_ref: ProductRef, order_id: str) -> bool:
        """
        授予访问权；依赖 (user_id, product) 唯一约束保证幂等。

        Returns:
            True 表示新建或重新激活；False 表示已存在有效授权
        """
        pass

    @abstractmethod
    async def revoke_for_order(self, order_id: str) -> int:
        """撤销订单关联的全部有效授权，返回撤销数量"""
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[AccessGrant]:
        pass
