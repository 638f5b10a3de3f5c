"""
Order fulfillment orchestrator.

Each handler runs in exactly one Unit of Work: lock the order row, check the
persisted status, apply the transition with a compare-and-swap and write the
dependent rows (items, access grants, bookings, cart). Either everything
commits or nothing does. Notifications and deferred-event release happen only
after the commit and can never undo it.

An event whose target status is already reached is a no-op. Any other
mismatch with the persisted status raises StateConflictError, which the
pipeline turns into a deferral.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.logging_config import get_logger
from domain.common.exceptions import OrderNotFoundError, StateConflictError, TransactionError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import NotificationJob, NotificationKind
from domain.order.entity import Order, OrderStatus
from domain.webhook.events import PaymentEvent

if TYPE_CHECKING:
    from application.services.deferral_service import EventDeferralService
    from application.services.notification_dispatcher import NotificationDispatcher

logger = get_logger(__name__)


class FulfillmentOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"


@dataclass(frozen=True)
class FulfillmentResult:
    outcome: FulfillmentOutcome
    order_id: str
    status: OrderStatus
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is FulfillmentOutcome.APPLIED


def _noop(order: Order, reason: str) -> FulfillmentResult:
    return FulfillmentResult(FulfillmentOutcome.NOOP, order.id, order.status, reason)


def _mismatch(order: Order, target: OrderStatus, event: PaymentEvent) -> StateConflictError:
    logger.warning(
        "order_status_mismatch",
        order_id=order.id,
        status=order.status.value,
        target=target.value,
        event_id=event.event_id,
    )
    return StateConflictError(
        order_id=order.id,
        current=order.status.value,
        expected=tuple(s.value for s in Order.predecessors_of(target)),
        event_type=event.type.value,
    )


def _failure_reason(event: PaymentEvent) -> str:
    obj = (event.payload.get("data") or {}).get("object") or {}
    error = obj.get("last_payment_error") or {}
    return error.get("message") or event.gateway_type


class OrderFulfillmentService:

    def __init__(
        self,
        uow_factory: Callable[[], AbstractUnitOfWork],
        notifications: "NotificationDispatcher",
        deferrals: Optional["EventDeferralService"] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._uow_factory = uow_factory
        self._notifications = notifications
        self._deferrals = deferrals
        self._clock = clock

    def attach_deferrals(self, deferrals: "EventDeferralService") -> None:
        self._deferrals = deferrals

    # ------------------------------------------------------------------
    # completion
    # ------------------------------------------------------------------

    async def complete(self, event: PaymentEvent) -> FulfillmentResult:
        order_id = event.correlation_id
        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_for_update(order_id)
                if order is None:
                    logger.warning("order_not_found", order_id=order_id, event_id=event.event_id)
                    raise OrderNotFoundError(order_id)

                if order.is_in(OrderStatus.COMPLETED):
                    logger.info("order_already_completed", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "already_completed")
                if not order.can_transition_to(OrderStatus.COMPLETED):
                    raise _mismatch(order, OrderStatus.COMPLETED, event)

                order.mark_completed(event.payment_reference)
                if not await uow.order_repository.compare_and_set_status(order, Order.predecessors_of(OrderStatus.COMPLETED)):
                    logger.info("order_transition_lost_race", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "concurrent_update")

                finalized = await uow.order_repository.finalize_items(order)
                granted = 0
                if order.user_id:
                    for item in order.items:
                        if await uow.access_grant_repository.grant(order.user_id, item.product_ref, order.id):
                            granted += 1
                confirmed = await uow.booking_repository.confirm_for_order(order.id)
                cleared = await uow.cart_repository.clear(order.user_id) if order.user_id else 0
                await uow.commit()
        except SQLAlchemyError as exc:
            logger.error("order_transaction_failed", order_id=order_id, event_id=event.event_id, handler="complete", error=str(exc))
            raise TransactionError(order_id=order_id) from exc

        logger.info(
            "order_completed",
            order_id=order.id,
            event_id=event.event_id,
            payment_reference=order.payment_reference,
            items_finalized=finalized,
            access_granted=granted,
            bookings_confirmed=confirmed,
            cart_items_cleared=cleared,
        )
        await self._notifications.enqueue_many([
            self._job(order, NotificationKind.CONFIRMATION, event),
            self._job(order, NotificationKind.OPERATOR_ALERT, event, alert="new_order"),
        ])
        if self._deferrals is not None:
            await self._deferrals.release_for_order(order.id)
        return FulfillmentResult(FulfillmentOutcome.APPLIED, order.id, order.status)

    # ------------------------------------------------------------------
    # failure
    # ------------------------------------------------------------------

    async def fail(self, event: PaymentEvent) -> FulfillmentResult:
        order_id = event.correlation_id
        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_for_update(order_id)
                if order is None:
                    logger.warning("order_not_found", order_id=order_id, event_id=event.event_id)
                    raise OrderNotFoundError(order_id)

                if order.is_in(OrderStatus.FAILED):
                    logger.info("order_already_failed", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "already_failed")
                if not order.can_transition_to(OrderStatus.FAILED):
                    raise _mismatch(order, OrderStatus.FAILED, event)

                order.mark_failed(_failure_reason(event))
                if not await uow.order_repository.compare_and_set_status(order, Order.predecessors_of(OrderStatus.FAILED)):
                    logger.info("order_transition_lost_race", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "concurrent_update")
                await uow.commit()
        except SQLAlchemyError as exc:
            logger.error("order_transaction_failed", order_id=order_id, event_id=event.event_id, handler="fail", error=str(exc))
            raise TransactionError(order_id=order_id) from exc

        logger.info("order_failed", order_id=order.id, event_id=event.event_id, reason=order.failure_reason)
        await self._notifications.enqueue_many([
            self._job(order, NotificationKind.FAILURE, event),
            self._job(order, NotificationKind.OPERATOR_ALERT, event, alert="payment_failed"),
        ])
        return FulfillmentResult(FulfillmentOutcome.APPLIED, order.id, order.status)

    # ------------------------------------------------------------------
    # refund
    # ------------------------------------------------------------------

    async def refund(self, event: PaymentEvent) -> FulfillmentResult:
        """
        completed -> refunded. Grants are revoked and bookings cancelled; the
        order and its items stay untouched as financial history.

        Raises StateConflictError while the order is not completed, so the
        caller can defer the event until the completion lands or its retries
        run out and operators are alerted.
        """
        order_id = event.correlation_id
        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_for_update(order_id)
                if order is None:
                    logger.warning("order_not_found", order_id=order_id, event_id=event.event_id)
                    raise OrderNotFoundError(order_id)

                if order.is_in(OrderStatus.REFUNDED):
                    logger.info("order_already_refunded", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "already_refunded")
                if not order.can_transition_to(OrderStatus.REFUNDED):
                    raise _mismatch(order, OrderStatus.REFUNDED, event)

                order.mark_refunded()
                if not await uow.order_repository.compare_and_set_status(order, Order.predecessors_of(OrderStatus.REFUNDED)):
                    logger.info("order_transition_lost_race", order_id=order.id, event_id=event.event_id)
                    return _noop(order, "concurrent_update")
                revoked = await uow.access_grant_repository.revoke_for_order(order.id)
                cancelled = await uow.booking_repository.cancel_for_order(order.id)
                await uow.commit()
        except SQLAlchemyError as exc:
            logger.error("order_transaction_failed", order_id=order_id, event_id=event.event_id, handler="refund", error=str(exc))
            raise TransactionError(order_id=order_id) from exc

        logger.info(
            "order_refunded",
            order_id=order.id,
            event_id=event.event_id,
            access_revoked=revoked,
            bookings_cancelled=cancelled,
        )
        await self._notifications.enqueue(self._job(order, NotificationKind.REFUND, event))
        return FulfillmentResult(FulfillmentOutcome.APPLIED, order.id, order.status)

    def _job(self, order: Order, kind: NotificationKind, event: PaymentEvent, **extra) -> NotificationJob:
        payload = {
            "order_id": order.id,
            "user_id": order.user_id,
            "status": order.status.value,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
            "items": [{"product": str(i.product_ref), "title": i.title} for i in order.items],
            "event_id": event.event_id,
            "processed_at": self._clock().isoformat(),
        }
        payload.update(extra)
        return NotificationJob(id=None, order_id=order.id, kind=kind, dedupe_key=event.event_id, payload=payload)
