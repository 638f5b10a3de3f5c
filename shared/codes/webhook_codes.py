"""
Webhook specific codes and gateway event-type mapping.
"""
from __future__ import annotations

from enum import IntEnum


class WebhookCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Inbound validation (6xxxx)
    SIGNATURE_INVALID = 60000
    EVENT_STALE = 60001
    PAYLOAD_MALFORMED = 60002

    # Fulfillment (7xxxx)
    ORDER_NOT_FOUND = 70000
    STATE_CONFLICT = 70001
    TRANSACTION_FAILED = 70002
    SIDE_EFFECT_FAILED = 70003

    # Admission control (8xxxx)
    RATE_LIMITED = 80000


# Gateway type -> internal event kind. Anything absent maps to "other".
GATEWAY_EVENT_TYPES = {
    "stripe": {
        "checkout.session.completed": "completed",
        "checkout.session.async_payment_succeeded": "completed",
        "checkout.session.async_payment_failed": "failed",
        "checkout.session.expired": "failed",
        "payment_intent.payment_failed": "failed",
        "charge.refunded": "refunded",
        # Acknowledged on purpose; completion is driven by the checkout session.
        "payment_intent.succeeded": "other",
        "payment_intent.created": "other",
        "charge.succeeded": "other",
    },
}
