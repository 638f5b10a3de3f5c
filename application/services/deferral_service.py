"""
Out-of-order event deferral.

Gateways do not order deliveries across event types, so a refund can arrive
before the completion it refers to. Such events are parked as DeferredEvent
rows and retried with exponential backoff. Attempt counts live in the shared
TTL store so every instance agrees on them. Once the attempts are used up
the event is dead-lettered and operators are alerted; nothing is dropped.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from application.ports.deferral import DeferralScheduler, DeferralTracker, DeferralTrackerUnavailable
from application.services.event_router import parse_event
from application.services.notification_dispatcher import NotificationDispatcher
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, OrderNotFoundError, StateConflictError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import NotificationJob, NotificationKind
from domain.webhook.deferral import DeferredEvent, DeferredStatus
from domain.webhook.events import PaymentEvent

logger = get_logger(__name__)

EventProcessor = Callable[[PaymentEvent], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventDeferralService:

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        tracker: DeferralTracker,
        scheduler: DeferralScheduler,
        notifications: NotificationDispatcher,
        max_attempts: int = 5,
        base_delay_seconds: int = 30,
        max_delay_seconds: int = 900,
        counter_ttl_seconds: int = 24 * 3600,
        provider: str = "stripe",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._uow_factory = uow_factory
        self._tracker = tracker
        self._scheduler = scheduler
        self._notifications = notifications
        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._counter_ttl = counter_ttl_seconds
        self._provider = provider
        self._clock = clock
        self._processor: Optional[EventProcessor] = None

    def bind_processor(self, processor: EventProcessor) -> None:
        """Set the callable that re-runs an event through routing and fulfillment."""
        self._processor = processor

    def backoff_seconds(self, attempt: int) -> int:
        return min(self._base_delay * 2 ** (max(attempt, 1) - 1), self._max_delay)

    async def _next_attempt(self, event_id: str) -> Optional[int]:
        try:
            return await self._tracker.increment(event_id, self._counter_ttl)
        except DeferralTrackerUnavailable as exc:
            logger.warning("deferral_tracker_unavailable", event_id=event_id, error=str(exc))
            return None

    async def defer(self, event: PaymentEvent, reason: str) -> DeferredEvent:
        attempts = await self._next_attempt(event.event_id)
        delay = 0
        async with self._uow_factory() as uow:
            deferred = await uow.deferred_event_repository.get_by_event_id(event.event_id)
            if deferred is None:
                deferred = DeferredEvent(
                    id=None,
                    event_id=event.event_id,
                    order_id=event.correlation_id or "",
                    event_type=event.gateway_type,
                    payload=event.payload,
                )
            if attempts is None:
                # Shared counter unreachable: fall back to the persisted count
                attempts = deferred.attempts + 1
            deferred.attempts = attempts
            deferred.last_reason = reason
            if attempts > self._max_attempts:
                deferred.dead_letter(reason)
            else:
                delay = self.backoff_seconds(attempts)
                deferred.status = DeferredStatus.PENDING
                deferred.next_attempt_at = self._clock() + timedelta(seconds=delay)
            deferred = await uow.deferred_event_repository.save(deferred)

        if deferred.status is DeferredStatus.DEAD_LETTERED:
            await self._escalate(deferred, reason)
            return deferred

        logger.info(
            "event_deferred",
            event_id=event.event_id,
            order_id=deferred.order_id,
            attempt=attempts,
            delay_seconds=delay,
            reason=reason,
        )
        try:
            self._scheduler.schedule(event.event_id, delay)
        except Exception as exc:
            # The row is pending with next_attempt_at; the periodic sweep retries it
            logger.error("deferred_event_schedule_failed", event_id=event.event_id, error=str(exc))
        return deferred

    async def reprocess(self, event_id: str) -> Optional[DeferredEvent]:
        """
        Re-run a parked event. The signature was verified at ingestion.

        Returns the updated row, or None when there is nothing pending.
        Transaction failures propagate so the worker retries.
        """
        if self._processor is None:
            raise RuntimeError("EventDeferralService has no processor bound")

        async with self._uow_factory() as uow:
            deferred = await uow.deferred_event_repository.get_by_event_id(event_id)
        if deferred is None or deferred.status is not DeferredStatus.PENDING:
            return deferred

        event = parse_event(
            deferred.payload,
            json.dumps(deferred.payload, sort_keys=True).encode(),
            self._provider,
        )
        try:
            await self._processor(event)
        except StateConflictError as exc:
            return await self.defer(event, exc.message)
        except OrderNotFoundError as exc:
            return await self._dead_letter(deferred, exc.message)

        async with self._uow_factory() as uow:
            current = await uow.deferred_event_repository.get_by_event_id(event_id)
            current.resolve()
            deferred = await uow.deferred_event_repository.save(current)
        try:
            await self._tracker.reset(event_id)
        except DeferralTrackerUnavailable as exc:
            logger.warning("deferral_tracker_unavailable", event_id=event_id, error=str(exc))
        logger.info("deferred_event_resolved", event_id=event_id, order_id=deferred.order_id, attempts=deferred.attempts)
        return deferred

    async def _dead_letter(self, deferred: DeferredEvent, reason: str) -> DeferredEvent:
        async with self._uow_factory() as uow:
            deferred.dead_letter(reason)
            deferred = await uow.deferred_event_repository.save(deferred)
        await self._escalate(deferred, reason)
        return deferred

    async def _escalate(self, deferred: DeferredEvent, reason: str) -> None:
        logger.error(
            "deferred_event_dead_lettered",
            event_id=deferred.event_id,
            order_id=deferred.order_id,
            attempts=deferred.attempts,
            reason=reason,
        )
        await self._notifications.enqueue(
            NotificationJob(
                id=None,
                order_id=deferred.order_id,
                kind=NotificationKind.OPERATOR_ALERT,
                dedupe_key=f"dead_letter:{deferred.event_id}",
                payload={
                    "alert": "webhook_event_dead_lettered",
                    "event_id": deferred.event_id,
                    "event_type": deferred.event_type,
                    "attempts": deferred.attempts,
                    "reason": reason,
                },
            )
        )

    async def release_for_order(self, order_id: str) -> int:
        """
        Re-run pending events for an order right after its completion committed.

        Runs after the commit, so failures are logged and never raised; rows
        that could not be released stay pending for the periodic sweep.
        """
        try:
            async with self._uow_factory() as uow:
                pending = await uow.deferred_event_repository.list_pending_for_order(order_id)
        except SQLAlchemyError as exc:
            logger.error("deferred_release_lookup_failed", order_id=order_id, error=str(exc))
            return 0
        released = 0
        for deferred in pending:
            try:
                result = await self.reprocess(deferred.event_id)
            except BusinessException as exc:
                logger.warning("deferred_release_failed", event_id=deferred.event_id, order_id=order_id, error=exc.message)
                continue
            except SQLAlchemyError as exc:
                logger.error("deferred_release_failed", event_id=deferred.event_id, order_id=order_id, error=str(exc))
                continue
            if result is not None and result.status is DeferredStatus.RESOLVED:
                released += 1
        return released

    async def reprocess_due(self, limit: int = 100) -> int:
        """Run every pending event whose next attempt is due; used by the periodic sweep."""
        async with self._uow_factory() as uow:
            due = await uow.deferred_event_repository.list_due(self._clock(), limit=limit)
        handled = 0
        for deferred in due:
            try:
                await self.reprocess(deferred.event_id)
                handled += 1
            except BusinessException as exc:
                logger.warning("deferred_sweep_item_failed", event_id=deferred.event_id, error=exc.message)
            except SQLAlchemyError as exc:
                logger.error("deferred_sweep_item_failed", event_id=deferred.event_id, error=str(exc))
        return handled
