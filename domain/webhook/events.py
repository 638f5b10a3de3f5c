"""
Payment gateway events as seen by the fulfillment core.

Dataclasses only; parsing from the wire format lives in the application
layer so the domain stays free of transport concerns.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class PaymentEventType(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    OTHER = "other"


@dataclass
class PaymentEvent:
    event_id: str
    type: PaymentEventType
    gateway_type: str
    correlation_id: Optional[str] = None
    payment_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    raw_payload_hash: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict = field(default_factory=dict)

    @property
    def is_handled(self) -> bool:
        return self.type is not PaymentEventType.OTHER
