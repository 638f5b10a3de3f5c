"""
Payment webhook pipeline.

    verify signature/freshness -> replay guard -> parse/route
        -> idempotency check -> fulfillment (one transaction)
        -> claim event key -> acknowledge

Everything before the commit is synchronous and transactional; notifications
are enqueued after it. Errors propagate as BusinessException subclasses and
are mapped to HTTP statuses by the global exception handlers.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

from application.dtos.webhooks import WebhookOutcome, WebhookResult
from application.services.deferral_service import EventDeferralService
from application.services.event_router import decode_body, parse_event
from application.services.fulfillment_service import FulfillmentResult, OrderFulfillmentService
from application.services.idempotency_guard import IdempotencyGuard
from application.services.replay_guard import ReplayGuard
from application.services.signature_verifier import WebhookSignatureVerifier
from core.logging_config import get_logger
from domain.common.exceptions import StateConflictError
from domain.webhook.events import PaymentEvent, PaymentEventType

logger = get_logger(__name__)

Handler = Callable[[PaymentEvent], Awaitable[FulfillmentResult]]


class PaymentWebhookService:

    def __init__(
        self,
        verifier: WebhookSignatureVerifier,
        replay_guard: ReplayGuard,
        idempotency: IdempotencyGuard,
        fulfillment: OrderFulfillmentService,
        deferrals: EventDeferralService,
        provider: str = "stripe",
    ):
        self._verifier = verifier
        self._replay_guard = replay_guard
        self._idempotency = idempotency
        self._fulfillment = fulfillment
        self._deferrals = deferrals
        self._provider = provider
        self._handlers: Dict[PaymentEventType, Handler] = {
            PaymentEventType.COMPLETED: fulfillment.complete,
            PaymentEventType.FAILED: fulfillment.fail,
            PaymentEventType.REFUNDED: fulfillment.refund,
        }
        fulfillment.attach_deferrals(deferrals)
        deferrals.bind_processor(self.process_event)

    async def handle(self, body: bytes, signature_header: Optional[str], source: str) -> WebhookResult:
        self._verifier.verify(body, signature_header)
        await self._replay_guard.check(source)
        event = parse_event(decode_body(body), body, self._provider)

        log = logger.bind(event_id=event.event_id, event_type=event.gateway_type, order_id=event.correlation_id)
        log.info("webhook_received", source=source)

        check = await self._idempotency.check(event.event_id)
        if check.already_processed:
            log.info("webhook_duplicate_skipped")
            return self._result(event, WebhookOutcome.DUPLICATE)

        try:
            result = await self.process_event(event)
        except StateConflictError as exc:
            # Not claimed: the event is applied later by the deferral worker
            deferred = await self._deferrals.defer(event, exc.message)
            log.info("webhook_deferred", status=deferred.status.value, attempts=deferred.attempts)
            return self._result(event, WebhookOutcome.DEFERRED)

        if result is None:
            log.info("webhook_ignored")
            return self._result(event, WebhookOutcome.IGNORED)
        outcome = WebhookOutcome.PROCESSED if result.applied else WebhookOutcome.NOOP
        log.info("webhook_processed", outcome=outcome.value, status=result.status.value, reason=result.reason)
        return self._result(event, outcome)

    async def process_event(self, event: PaymentEvent) -> Optional[FulfillmentResult]:
        """
        Route one verified event and claim its idempotency key once the
        outcome is durable. Returns None for types that are acknowledged only.
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            await self._claim(event)
            return None
        result = await handler(event)
        await self._claim(event)
        return result

    async def _claim(self, event: PaymentEvent) -> None:
        claim = await self._idempotency.check_and_claim(event.event_id)
        if claim.already_processed:
            # A concurrent delivery committed first; its state check made ours a no-op
            logger.info("idempotency_key_already_claimed", event_id=event.event_id)

    @staticmethod
    def _result(event: PaymentEvent, outcome: WebhookOutcome) -> WebhookResult:
        return WebhookResult(
            event_id=event.event_id,
            event_type=event.gateway_type,
            outcome=outcome,
            order_id=event.correlation_id,
        )
