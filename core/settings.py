"""
Payment webhook settings using pydantic-settings v2 with nested env keys.

This module is isolated so core.config.Settings stays focused on app-wide
concerns. Examples:

    WEBHOOK__SIGNING_SECRET=whsec_current
    WEBHOOK__PREVIOUS_SIGNING_SECRET=whsec_old      # during secret rotation
    WEBHOOK__TOLERANCE_SECONDS=300
    NOTIFICATIONS__ENDPOINT=https://mailer.internal/send
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseModel):
    signing_secret: Optional[str] = None
    previous_signing_secret: Optional[str] = None
    signature_header: str = "Stripe-Signature"
    provider: str = "stripe"

    # Freshness window for the signed timestamp
    tolerance_seconds: int = 300
    max_future_seconds: int = 60

    # Idempotency records must outlive the gateway's own retry window
    idempotency_ttl_seconds: int = 3 * 24 * 3600
    gateway_retry_window_seconds: int = 3 * 24 * 3600

    # Replay/abuse guard (sliding window per source)
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60

    # Out-of-order deferral policy
    deferral_max_attempts: int = 5
    deferral_base_delay_seconds: int = 30
    deferral_max_delay_seconds: int = 900

    @model_validator(mode="after")
    def _validate_retention(self):
        if self.idempotency_ttl_seconds < self.gateway_retry_window_seconds:
            raise ValueError(
                "WEBHOOK__IDEMPOTENCY_TTL_SECONDS must be >= WEBHOOK__GATEWAY_RETRY_WINDOW_SECONDS, "
                "otherwise a late gateway retry could be applied twice"
            )
        if self.rate_limit_requests < 1 or self.rate_limit_window_seconds < 1:
            raise ValueError("rate limit requests/window must be positive")
        if self.deferral_max_attempts < 1:
            raise ValueError("WEBHOOK__DEFERRAL_MAX_ATTEMPTS must be >= 1")
        return self

    @property
    def signing_secrets(self) -> list[str]:
        """Active secrets, current first. At most two during rotation."""
        return [s for s in (self.signing_secret, self.previous_signing_secret) if s]


class NotificationSettings(BaseModel):
    endpoint: Optional[str] = None  # mailer/SMS relay; log-only delivery when unset
    api_key: Optional[str] = None
    timeout_seconds: float = 5.0
    max_retries: int = 5
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 600

    # 投递租约；以及 queued 任务多久未提交/重试才由定时任务重新投递
    delivery_lease_seconds: int = 300
    resubmit_stale_seconds: int = 900

    @model_validator(mode="after")
    def _validate_resubmit_window(self):
        if self.resubmit_stale_seconds <= self.backoff_max_seconds:
            raise ValueError(
                "NOTIFICATIONS__RESUBMIT_STALE_SECONDS must be > NOTIFICATIONS__BACKOFF_MAX_SECONDS, "
                "otherwise a job waiting for its retry would be submitted twice"
            )
        return self


class PaymentSettings(BaseSettings):
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
