"""
活动预订仓储接口 - 订单完成时确认预订，退款时取消预订
"""
from abc import ABC, abstractmethod
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingRepository(ABC):

    @abstractmethod
    async def confirm_for_order(self, order_id: str) -> int:
        """pending -> confirmed，返回受影响行数"""
        pass

    @abstractmethod
    async def cancel_for_order(self, order_id: str) -> int:
        """任意未取消状态 -> cancelled，返回受影响行数"""
        pass
