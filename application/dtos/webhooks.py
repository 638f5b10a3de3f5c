"""
Webhook DTOs (Pydantic v2) used at the webhook boundary.

Only the fields the pipeline relies on are declared; everything else in the
gateway payload is preserved through ``extra="allow"``.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class GatewayObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    client_reference_id: Optional[str] = None
    payment_intent: Optional[str] = None
    amount_total: Optional[int] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payment_intent", mode="before")
    @classmethod
    def _expand_payment_intent(cls, v):
        # Expanded objects carry the id inside
        if isinstance(v, dict):
            return v.get("id")
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, v):
        return v or {}


class GatewayEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: GatewayObject


class GatewayEventPayload(BaseModel):
    """Minimal shape of a gateway event: ``{id, type, created?, data: {object: {...}}}``."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: Optional[int] = None
    data: GatewayEventData


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    DEFERRED = "deferred"


class WebhookResult(BaseModel):
    """Body of a 200 acknowledgement."""

    received: bool = True
    event_id: str
    event_type: str
    outcome: WebhookOutcome
    order_id: Optional[str] = None

    @computed_field
    @property
    def duplicate(self) -> bool:
        return self.outcome is WebhookOutcome.DUPLICATE

    @computed_field
    @property
    def deferred(self) -> bool:
        return self.outcome is WebhookOutcome.DEFERRED
