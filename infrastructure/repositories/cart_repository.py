"""
购物车仓储实现
"""
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.cart.repository import CartRepository
from infrastructure.models.cart import CartItemModel


class SQLAlchemyCartRepository(CartRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def clear(self, user_id: str) -> int:
        result = await self.session.execute(
            delete(CartItemModel)
            .where(CartItemModel.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(CartItemModel).where(CartItemModel.user_id == user_id)
        )
        return int(result.scalar_one())
