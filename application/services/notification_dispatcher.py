"""
Side-effect dispatcher.

``enqueue`` persists a queued NotificationJob in its own short transaction
and hands its id to the task queue; delivery happens out of band with its
own retry budget. Nothing here can reopen or reverse an order transaction.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from application.ports.notifications import NotificationQueue, NotificationSender
from core.logging_config import get_logger
from domain.common.exceptions import SideEffectError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import NotificationJob

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        queue: NotificationQueue,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._uow_factory = uow_factory
        self._queue = queue
        self._clock = clock

    async def _persist(self, job: NotificationJob) -> Optional[NotificationJob]:
        try:
            async with self._uow_factory() as uow:
                return await uow.notification_repository.add(job)
        except SQLAlchemyError as exc:
            raise SideEffectError(f"could not persist notification: {exc}", kind=job.kind.value) from exc

    async def _submit(self, job: NotificationJob) -> None:
        try:
            self._queue.submit(job.id)
        except Exception as exc:
            # Job row stays queued without a submission mark; the sweep picks it up again
            raise SideEffectError(f"could not submit notification: {exc}", job_id=job.id, kind=job.kind.value) from exc
        try:
            async with self._uow_factory() as uow:
                await uow.notification_repository.mark_submitted(job.id, self._clock())
        except SQLAlchemyError as exc:
            # Already on the queue; a missing mark only means a possible early resubmit
            logger.warning("notification_submit_mark_failed", job_id=job.id, error=str(exc))

    async def enqueue(self, job: NotificationJob) -> Optional[NotificationJob]:
        """
        Queue one notification. Returns the stored job, or None when the same
        (order_id, kind, dedupe_key) was already queued or queuing failed.
        Failures are logged, never raised to the caller.
        """
        try:
            stored = await self._persist(job)
            if stored is None:
                logger.info(
                    "notification_duplicate_skipped",
                    order_id=job.order_id,
                    kind=job.kind.value,
                    dedupe_key=job.dedupe_key,
                )
                return None
            await self._submit(stored)
        except SideEffectError as exc:
            logger.error(
                "notification_enqueue_failed",
                order_id=job.order_id,
                kind=job.kind.value,
                error=exc.message,
                job_id=(exc.details or {}).get("job_id"),
            )
            return None

        logger.info("notification_enqueued", job_id=stored.id, order_id=stored.order_id, kind=stored.kind.value)
        return stored

    async def enqueue_many(self, jobs: Iterable[NotificationJob]) -> List[NotificationJob]:
        queued = []
        for job in jobs:
            stored = await self.enqueue(job)
            if stored is not None:
                queued.append(stored)
        return queued

    async def resubmit_queued(self, limit: int = 100, stale_after_seconds: int = 900) -> int:
        """
        Hand queued jobs to the queue again (used by the periodic sweep).

        Only jobs never submitted, or last submitted (or retried) more than
        ``stale_after_seconds`` ago and not leased by a worker, are picked up.
        """
        now = self._clock()
        async with self._uow_factory() as uow:
            jobs = await uow.notification_repository.list_resubmittable(
                now, now - timedelta(seconds=stale_after_seconds), limit=limit
            )
        resubmitted = 0
        for job in jobs:
            try:
                await self._submit(job)
            except SideEffectError as exc:
                logger.error("notification_resubmit_failed", job_id=job.id, error=exc.message)
                continue
            resubmitted += 1
        return resubmitted


class NotificationDeliveryService:
    """Worker-side delivery of a single job with bounded attempts."""

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        sender: NotificationSender,
        max_attempts: int,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._uow_factory = uow_factory
        self._sender = sender
        self._max_attempts = max_attempts
        self._lease_seconds = lease_seconds
        self._clock = clock

    async def _save(self, job: NotificationJob) -> NotificationJob:
        async with self._uow_factory() as uow:
            return await uow.notification_repository.update(job)

    async def _claim(self, job_id: int) -> bool:
        now = self._clock()
        async with self._uow_factory() as uow:
            return await uow.notification_repository.claim(job_id, now, now + timedelta(seconds=self._lease_seconds))

    async def deliver(self, job_id: int) -> Optional[NotificationJob]:
        """
        Send the job once.

        The job is leased with a conditional update first; when another
        worker holds the lease the job is returned unsent. Raises
        SideEffectError when the send failed and attempts remain, so the
        worker can schedule a retry. When attempts are exhausted the job is
        dead-lettered and returned instead.
        """
        async with self._uow_factory() as uow:
            job = await uow.notification_repository.get_by_id(job_id)
        if job is None:
            logger.warning("notification_job_missing", job_id=job_id)
            return None
        if job.is_final:
            return job
        if not await self._claim(job_id):
            logger.info("notification_delivery_in_progress", job_id=job_id)
            return job

        try:
            await self._sender.send(job)
        except Exception as exc:
            job.record_attempt(str(exc))
            if job.attempts >= self._max_attempts:
                job.mark_dead_lettered(str(exc))
                await self._save(job)
                logger.error(
                    "notification_dead_lettered",
                    job_id=job.id,
                    order_id=job.order_id,
                    kind=job.kind.value,
                    attempts=job.attempts,
                    error=str(exc),
                )
                return job
            job.schedule_retry(self._clock())
            await self._save(job)
            logger.warning(
                "notification_delivery_failed",
                job_id=job.id,
                order_id=job.order_id,
                kind=job.kind.value,
                attempts=job.attempts,
                error=str(exc),
            )
            raise SideEffectError(str(exc), job_id=job.id, kind=job.kind.value) from exc

        job.record_attempt()
        job.mark_sent()
        job = await self._save(job)
        logger.info("notification_sent", job_id=job.id, order_id=job.order_id, kind=job.kind.value)
        return job
