"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.webhook_codes import WebhookCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


# ============= Webhook ingestion =============

class SignatureError(BusinessException):
    """Inbound event is not signed by the gateway (terminal, 400)."""

    def __init__(self, message: str = "Invalid webhook signature", *, details: Optional[dict] = None):
        super().__init__(
            code=WebhookCode.SIGNATURE_INVALID,
            message=message,
            error_type="SignatureError",
            details=details,
        )


class StaleEventError(BusinessException):
    """Signed timestamp is outside the accepted freshness window (terminal, 400)."""

    def __init__(self, age_seconds: int, tolerance_seconds: int):
        super().__init__(
            code=WebhookCode.EVENT_STALE,
            message="Webhook timestamp outside the tolerance window",
            error_type="StaleEventError",
            details={"age_seconds": age_seconds, "tolerance_seconds": tolerance_seconds},
        )


class MalformedPayloadError(BusinessException):
    """Body is not a well-formed gateway event (terminal, 400)."""

    def __init__(self, message: str = "Malformed webhook payload", *, field: Optional[str] = None):
        super().__init__(
            code=WebhookCode.PAYLOAD_MALFORMED,
            message=message,
            error_type="MalformedPayloadError",
            field=field,
        )


class RateLimitExceededError(BusinessException):
    """Replay/abuse guard rejected the request (retryable, 429)."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            code=WebhookCode.RATE_LIMITED,
            message="Too many webhook requests, retry later",
            error_type="RateLimitExceeded",
            details={"retry_after": retry_after},
        )


# ============= Fulfillment =============

class OrderNotFoundError(BusinessException):
    """Correlation id does not resolve to an order (terminal for this event, 404)."""

    def __init__(self, order_id: str):
        super().__init__(
            code=WebhookCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class StateConflictError(BusinessException):
    """The event's transition does not match the order's current status.

    Never surfaced to the gateway: the pipeline turns it into a deferral.
    """

    def __init__(self, order_id: str, current: str, expected: tuple[str, ...], event_type: str):
        self.order_id = order_id
        self.current = current
        self.expected = expected
        self.event_type = event_type
        super().__init__(
            code=WebhookCode.STATE_CONFLICT,
            message=f"Order {order_id} is {current}, expected one of {', '.join(expected)}",
            error_type="StateConflict",
            details={"order_id": order_id, "current": current, "expected": list(expected), "event_type": event_type},
        )


class TransactionError(BusinessException):
    """Database failure mid-transaction; everything was rolled back (retryable, 500)."""

    def __init__(self, message: str = "Order transaction failed", *, order_id: Optional[str] = None):
        super().__init__(
            code=WebhookCode.TRANSACTION_FAILED,
            message=message,
            error_type="TransactionError",
            details={"order_id": order_id} if order_id else None,
        )


class SideEffectError(BusinessException):
    """Post-commit notification failure; logged and retried, never returned to the gateway."""

    def __init__(self, message: str, *, job_id: Optional[int] = None, kind: Optional[str] = None):
        super().__init__(
            code=WebhookCode.SIDE_EFFECT_FAILED,
            message=message,
            error_type="SideEffectError",
            details={"job_id": job_id, "kind": kind},
        )
