"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.access.repository import AccessGrantRepository
from domain.booking.repository import BookingRepository
from domain.cart.repository import CartRepository
from domain.notification.repository import NotificationJobRepository
from domain.order.repository import OrderRepository
from domain.webhook.deferral import DeferredEventRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    order_repository: OrderRepository
    access_grant_repository: AccessGrantRepository
    cart_repository: CartRepository
    booking_repository: BookingRepository
    notification_repository: NotificationJobRepository
    deferred_event_repository: DeferredEventRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.access_grant_repository = None  # type: ignore[assignment]
        self.cart_repository = None  # type: ignore[assignment]
        self.booking_repository = None  # type: ignore[assignment]
        self.notification_repository = None  # type: ignore[assignment]
        self.deferred_event_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
