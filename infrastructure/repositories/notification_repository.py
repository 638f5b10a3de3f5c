"""
通知任务仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.notification.entity import NotificationJob, NotificationKind, NotificationStatus
from domain.notification.repository import NotificationJobRepository
from infrastructure.models.notification import NotificationJobModel


class SQLAlchemyNotificationJobRepository(NotificationJobRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: NotificationJobModel) -> NotificationJob:
        return NotificationJob(
            id=model.id,
            order_id=model.order_id,
            kind=NotificationKind(model.kind),
            dedupe_key=model.dedupe_key,
            status=NotificationStatus(model.status),
            attempts=model.attempts,
            payload=dict(model.payload or {}),
            last_error=model.last_error,
            submitted_at=model.submitted_at,
            locked_until=model.locked_until,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def add(self, job: NotificationJob) -> Optional[NotificationJob]:
        model = NotificationJobModel(
            order_id=job.order_id,
            kind=job.kind.value,
            dedupe_key=job.dedupe_key,
            status=job.status.value,
            attempts=job.attempts,
            payload=job.payload,
            last_error=job.last_error,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(model)
        except IntegrityError:
            # 同一事件已为该订单排队过同类通知
            return None
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, job_id: int) -> Optional[NotificationJob]:
        model = await self.session.get(NotificationJobModel, job_id)
        return self._to_entity(model) if model else None

    async def update(self, job: NotificationJob) -> NotificationJob:
        model = await self.session.get(NotificationJobModel, job.id)
        if model is None:
            raise ValueError(f"notification job {job.id} does not exist")
        model.status = job.status.value
        model.attempts = job.attempts
        model.last_error = job.last_error
        model.payload = job.payload
        model.submitted_at = job.submitted_at
        model.locked_until = job.locked_until
        await self.session.flush()
        return self._to_entity(model)

    async def list_for_order(self, order_id: str) -> List[NotificationJob]:
        result = await self.session.execute(
            select(NotificationJobModel)
            .where(NotificationJobModel.order_id == order_id)
            .order_by(NotificationJobModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def mark_submitted(self, job_id: int, at: datetime) -> None:
        await self.session.execute(
            update(NotificationJobModel)
            .where(NotificationJobModel.id == job_id)
            .values(submitted_at=at)
            .execution_options(synchronize_session=False)
        )

    async def list_resubmittable(self, now: datetime, stale_before: datetime, limit: int = 100) -> List[NotificationJob]:
        result = await self.session.execute(
            select(NotificationJobModel)
            .where(
                NotificationJobModel.status == NotificationStatus.QUEUED.value,
                or_(
                    NotificationJobModel.submitted_at.is_(None),
                    NotificationJobModel.submitted_at < stale_before,
                ),
                or_(
                    NotificationJobModel.locked_until.is_(None),
                    NotificationJobModel.locked_until < now,
                ),
            )
            .order_by(NotificationJobModel.id)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def claim(self, job_id: int, now: datetime, lease_until: datetime) -> bool:
        result = await self.session.execute(
            update(NotificationJobModel)
            .where(
                NotificationJobModel.id == job_id,
                NotificationJobModel.status == NotificationStatus.QUEUED.value,
                or_(
                    NotificationJobModel.locked_until.is_(None),
                    NotificationJobModel.locked_until < now,
                ),
            )
            .values(locked_until=lease_until)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
