"""
购物车仓储接口 - 购物车快照按用户存储，订单完成时在同一事务内清空
"""
from abc import ABC, abstractmethod


class CartRepository(ABC):

    @abstractmethod
    async def clear(self, user_id: str) -> int:
        """清空用户购物车，返回删除的条目数"""
        pass

    @abstractmethod
    async def count(self, user_id: str) -> int:
        pass
