"""
延迟重放事件仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.webhook.deferral import DeferredEvent, DeferredEventRepository, DeferredStatus
from infrastructure.models.deferred_event import DeferredWebhookEventModel


class SQLAlchemyDeferredEventRepository(DeferredEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DeferredWebhookEventModel) -> DeferredEvent:
        return DeferredEvent(
            id=model.id,
            event_id=model.event_id,
            order_id=model.order_id,
            event_type=model.event_type,
            payload=dict(model.payload or {}),
            attempts=model.attempts,
            status=DeferredStatus(model.status),
            next_attempt_at=model.next_attempt_at,
            last_reason=model.last_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _get_model(self, event_id: str) -> Optional[DeferredWebhookEventModel]:
        result = await self.session.execute(
            select(DeferredWebhookEventModel).where(DeferredWebhookEventModel.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_by_event_id(self, event_id: str) -> Optional[DeferredEvent]:
        model = await self._get_model(event_id)
        return self._to_entity(model) if model else None

    async def save(self, deferred: DeferredEvent) -> DeferredEvent:
        model = await self._get_model(deferred.event_id)
        if model is None:
            model = DeferredWebhookEventModel(event_id=deferred.event_id)
            self.session.add(model)
        model.order_id = deferred.order_id
        model.event_type = deferred.event_type
        model.payload = deferred.payload
        model.attempts = deferred.attempts
        model.status = deferred.status.value
        model.next_attempt_at = deferred.next_attempt_at
        model.last_reason = deferred.last_reason
        await self.session.flush()
        return self._to_entity(model)

    async def list_pending_for_order(self, order_id: str) -> List[DeferredEvent]:
        result = await self.session.execute(
            select(DeferredWebhookEventModel)
            .where(DeferredWebhookEventModel.order_id == order_id)
            .where(DeferredWebhookEventModel.status == DeferredStatus.PENDING.value)
            .order_by(DeferredWebhookEventModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_due(self, now: datetime, limit: int = 100) -> List[DeferredEvent]:
        result = await self.session.execute(
            select(DeferredWebhookEventModel)
            .where(DeferredWebhookEventModel.status == DeferredStatus.PENDING.value)
            .where(DeferredWebhookEventModel.next_attempt_at <= now)
            .order_by(DeferredWebhookEventModel.next_attempt_at)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
