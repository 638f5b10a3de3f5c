"""Notification delivery tasks"""
from __future__ import annotations

import asyncio
import random

from celery import shared_task

from application.services.notification_dispatcher import NotificationDeliveryService, NotificationDispatcher
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import SideEffectError
from infrastructure.external.notifications import build_notification_sender
from infrastructure.unit_of_work import sqlalchemy_uow_factory
from infrastructure.wiring import worker_scope
from ..utils.base_task import BaseTask
from ..utils.dispatcher import TaskDispatcher

logger = get_logger(__name__)


def retry_countdown(retries: int, base: int, maximum: int) -> int:
    """Exponential backoff with full jitter, capped at ``maximum`` seconds."""
    ceiling = min(base * 2 ** retries, maximum)
    return random.randint(max(1, ceiling // 2), max(1, ceiling))


async def _deliver(job_id: int):
    cfg = payment_settings.notifications
    sender = build_notification_sender(cfg)
    try:
        async with worker_scope() as (session_factory, _redis):
            service = NotificationDeliveryService(
                sqlalchemy_uow_factory(session_factory),
                sender,
                max_attempts=cfg.max_retries + 1,
                lease_seconds=cfg.delivery_lease_seconds,
            )
            return await service.deliver(job_id)
    finally:
        aclose = getattr(sender, "aclose", None)
        if aclose is not None:
            await aclose()


@shared_task(name="notifications.deliver", bind=True, base=BaseTask, max_retries=None)
def deliver_notification(self, job_id: int):
    """Deliver one job; the job row's attempt count bounds the retries."""
    cfg = payment_settings.notifications
    try:
        job = asyncio.run(_deliver(job_id))
    except SideEffectError as exc:
        countdown = retry_countdown(self.request.retries, cfg.backoff_base_seconds, cfg.backoff_max_seconds)
        raise self.retry(exc=exc, countdown=countdown)
    if job is None:
        return {"job_id": job_id, "status": "missing"}
    return {"job_id": job_id, "status": job.status.value, "attempts": job.attempts}


async def _resubmit_queued(limit: int) -> int:
    async with worker_scope() as (session_factory, _redis):
        dispatcher = NotificationDispatcher(sqlalchemy_uow_factory(session_factory), TaskDispatcher())
        return await dispatcher.resubmit_queued(
            limit=limit,
            stale_after_seconds=payment_settings.notifications.resubmit_stale_seconds,
        )


@shared_task(name="notifications.resubmit_queued", base=BaseTask)
def resubmit_queued_notifications(limit: int = 100):
    count = asyncio.run(_resubmit_queued(limit))
    if count:
        logger.info("notifications_resubmitted", count=count)
    return {"resubmitted": count}
