"""Tasks that re-run out-of-order webhook events"""
from __future__ import annotations

import asyncio

from celery import shared_task

from core.logging_config import get_logger
from domain.common.exceptions import TransactionError
from infrastructure.wiring import build_webhook_components, worker_scope
from ..utils.base_task import BaseTask
from ..utils.dispatcher import TaskDispatcher

logger = get_logger(__name__)


async def _reprocess(event_id: str):
    async with worker_scope() as (session_factory, redis):
        dispatcher = TaskDispatcher()
        components = build_webhook_components(
            session_factory=session_factory,
            queue=dispatcher,
            scheduler=dispatcher,
            redis=redis,
        )
        return await components.deferrals.reprocess(event_id)


@shared_task(name="webhooks.reprocess_deferred", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def reprocess_deferred_event(self, event_id: str):
    try:
        deferred = asyncio.run(_reprocess(event_id))
    except TransactionError as exc:
        raise self.retry(exc=exc)
    if deferred is None:
        return {"event_id": event_id, "status": "missing"}
    return {"event_id": event_id, "status": deferred.status.value, "attempts": deferred.attempts}


async def _sweep(limit: int) -> int:
    async with worker_scope() as (session_factory, redis):
        dispatcher = TaskDispatcher()
        components = build_webhook_components(
            session_factory=session_factory,
            queue=dispatcher,
            scheduler=dispatcher,
            redis=redis,
        )
        return await components.deferrals.reprocess_due(limit=limit)


@shared_task(name="webhooks.sweep_deferred", base=BaseTask)
def sweep_deferred_events(limit: int = 100):
    handled = asyncio.run(_sweep(limit))
    if handled:
        logger.info("deferred_events_swept", handled=handled)
    return {"handled": handled}
