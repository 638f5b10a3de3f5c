"""
Event router: gateway payload -> PaymentEvent -> handler kind.

Unrecognised and intentionally ignored gateway types map to ``other`` and are
acknowledged without touching state, so new gateway event types never cause
retries.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from application.dtos.webhooks import GatewayEventPayload
from domain.common.exceptions import MalformedPayloadError
from domain.webhook.events import PaymentEvent, PaymentEventType
from shared.codes.webhook_codes import GATEWAY_EVENT_TYPES

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP", "ISK", "UGX"}


def decode_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPayloadError(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Body must be a JSON object")
    return payload


def resolve_event_type(gateway_type: str, provider: str = "stripe") -> PaymentEventType:
    mapped = GATEWAY_EVENT_TYPES.get(provider, {}).get(gateway_type)
    return PaymentEventType(mapped) if mapped else PaymentEventType.OTHER


def _to_amount(minor: Optional[int], currency: Optional[str]) -> Optional[Decimal]:
    if minor is None:
        return None
    if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(minor)
    return Decimal(minor) / Decimal(100)


def parse_event(payload: dict[str, Any], raw_body: bytes, provider: str = "stripe") -> PaymentEvent:
    try:
        envelope = GatewayEventPayload.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise MalformedPayloadError(f"Invalid gateway event: {first.get('msg', 'invalid')}", field=field) from exc

    obj = envelope.data.object
    event_type = resolve_event_type(envelope.type, provider)
    correlation_id = (
        obj.client_reference_id
        or obj.metadata.get("order_id")
        or obj.metadata.get("orderId")
    )
    if event_type is not PaymentEventType.OTHER and not correlation_id:
        raise MalformedPayloadError("correlation id missing", field="data.object.client_reference_id")

    currency = obj.currency.upper() if obj.currency else None
    occurred_at = (
        datetime.fromtimestamp(envelope.created, tz=timezone.utc)
        if envelope.created is not None
        else datetime.now(timezone.utc)
    )
    return PaymentEvent(
        event_id=envelope.id,
        type=event_type,
        gateway_type=envelope.type,
        correlation_id=str(correlation_id) if correlation_id else None,
        payment_reference=obj.payment_intent or obj.id,
        amount=_to_amount(obj.amount_total if obj.amount_total is not None else obj.amount, currency),
        currency=currency,
        raw_payload_hash=hashlib.sha256(raw_body).hexdigest(),
        occurred_at=occurred_at,
        payload=payload,
    )
