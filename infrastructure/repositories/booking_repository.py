"""
活动预订仓储实现
"""
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.booking.repository import BookingRepository, BookingStatus
from infrastructure.models.booking import EventBookingModel


class SQLAlchemyBookingRepository(BookingRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _move(self, order_id: str, from_statuses: list[str], to_status: BookingStatus) -> int:
        result = await self.session.execute(
            update(EventBookingModel)
            .where(EventBookingModel.order_id == order_id)
            .where(EventBookingModel.status.in_(from_statuses))
            .values(status=to_status.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def confirm_for_order(self, order_id: str) -> int:
        return await self._move(order_id, [BookingStatus.PENDING.value], BookingStatus.CONFIRMED)

    async def cancel_for_order(self, order_id: str) -> int:
        return await self._move(
            order_id,
            [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value],
            BookingStatus.CANCELLED,
        )
