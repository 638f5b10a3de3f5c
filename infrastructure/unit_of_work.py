"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

import inspect
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.access_grant_repository import SQLAlchemyAccessGrantRepository
from infrastructure.repositories.booking_repository import SQLAlchemyBookingRepository
from infrastructure.repositories.cart_repository import SQLAlchemyCartRepository
from infrastructure.repositories.deferred_event_repository import SQLAlchemyDeferredEventRepository
from infrastructure.repositories.notification_repository import SQLAlchemyNotificationJobRepository
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work：一个订单事件的全部写入共享同一个事务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _bind_repositories(self, session: Optional[AsyncSession]) -> None:
        if session is None:
            self.order_repository = None  # type: ignore[assignment]
            self.access_grant_repository = None  # type: ignore[assignment]
            self.cart_repository = None  # type: ignore[assignment]
            self.booking_repository = None  # type: ignore[assignment]
            self.notification_repository = None  # type: ignore[assignment]
            self.deferred_event_repository = None  # type: ignore[assignment]
            return
        self.order_repository = SQLAlchemyOrderRepository(session)
        self.access_grant_repository = SQLAlchemyAccessGrantRepository(session)
        self.cart_repository = SQLAlchemyCartRepository(session)
        self.booking_repository = SQLAlchemyBookingRepository(session)
        self.notification_repository = SQLAlchemyNotificationJobRepository(session)
        self.deferred_event_repository = SQLAlchemyDeferredEventRepository(session)

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._committed = False
        self._bind_repositories(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            self._transaction = None
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._bind_repositories(None)

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def sqlalchemy_uow_factory(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> Callable[[], SQLAlchemyUnitOfWork]:
    """返回无参工厂，每次调用产生一个新的 Unit of Work（服务按事件各开一个事务）"""

    def _factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory)

    return _factory
