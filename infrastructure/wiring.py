"""
Assembly of the webhook pipeline from concrete adapters.

Shared by the API composition root and the Celery workers. When Redis is not
configured, process-local stores are used; that is only correct for a single
instance and is logged as such.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.deferral import DeferralScheduler
from application.ports.notifications import NotificationQueue
from application.services.deferral_service import EventDeferralService
from application.services.fulfillment_service import OrderFulfillmentService
from application.services.idempotency_guard import IdempotencyGuard
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.replay_guard import ReplayGuard
from application.services.signature_verifier import WebhookSignatureVerifier
from application.services.webhook_service import PaymentWebhookService
from core.config import settings
from core.logging_config import get_logger
from core.settings import WebhookSettings, payment_settings
from infrastructure.database import build_engine, build_session_factory
from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.stores import (
    InMemoryDeferralTracker,
    InMemoryIdempotencyStore,
    InMemorySlidingWindowLimiter,
    RedisDeferralTracker,
    RedisIdempotencyStore,
    RedisSlidingWindowLimiter,
)
from infrastructure.unit_of_work import sqlalchemy_uow_factory

logger = get_logger(__name__)


@dataclass
class WebhookComponents:
    service: PaymentWebhookService
    fulfillment: OrderFulfillmentService
    deferrals: EventDeferralService
    notifications: NotificationDispatcher


@dataclass
class LocalStores:
    """Process-local stand-ins for the shared Redis stores."""

    idempotency: InMemoryIdempotencyStore
    limiter: InMemorySlidingWindowLimiter
    tracker: InMemoryDeferralTracker

    @classmethod
    def create(cls) -> "LocalStores":
        return cls(InMemoryIdempotencyStore(), InMemorySlidingWindowLimiter(), InMemoryDeferralTracker())


def build_webhook_components(
    *,
    session_factory: Callable[[], AsyncSession],
    queue: NotificationQueue,
    scheduler: DeferralScheduler,
    redis: Optional[RedisClient] = None,
    local_stores: Optional[LocalStores] = None,
    webhook_settings: Optional[WebhookSettings] = None,
) -> WebhookComponents:
    cfg = webhook_settings or payment_settings.webhook
    uow_factory = sqlalchemy_uow_factory(session_factory)

    if redis is not None:
        idempotency_store = RedisIdempotencyStore(redis)
        limiter = RedisSlidingWindowLimiter(redis)
        tracker = RedisDeferralTracker(redis)
    else:
        stores = local_stores or LocalStores.create()
        idempotency_store, limiter, tracker = stores.idempotency, stores.limiter, stores.tracker

    notifications = NotificationDispatcher(uow_factory, queue)
    deferrals = EventDeferralService(
        uow_factory,
        tracker,
        scheduler,
        notifications,
        max_attempts=cfg.deferral_max_attempts,
        base_delay_seconds=cfg.deferral_base_delay_seconds,
        max_delay_seconds=cfg.deferral_max_delay_seconds,
        counter_ttl_seconds=cfg.idempotency_ttl_seconds,
        provider=cfg.provider,
    )
    fulfillment = OrderFulfillmentService(uow_factory, notifications, deferrals)
    service = PaymentWebhookService(
        verifier=WebhookSignatureVerifier(
            cfg.signing_secrets,
            tolerance_seconds=cfg.tolerance_seconds,
            max_future_seconds=cfg.max_future_seconds,
        ),
        replay_guard=ReplayGuard(limiter, cfg.rate_limit_requests, cfg.rate_limit_window_seconds),
        idempotency=IdempotencyGuard(idempotency_store, cfg.idempotency_ttl_seconds),
        fulfillment=fulfillment,
        deferrals=deferrals,
        provider=cfg.provider,
    )
    return WebhookComponents(service, fulfillment, deferrals, notifications)


@asynccontextmanager
async def worker_scope() -> AsyncIterator[tuple[Callable[[], AsyncSession], Optional[RedisClient]]]:
    """
    Fresh engine and Redis connection for one ``asyncio.run`` inside a task.

    Pools are bound to the event loop that created them, so each task run
    builds and disposes its own.
    """
    engine = build_engine(settings.database.url)
    raw_redis = None
    redis_client = None
    if settings.redis.url:
        raw_redis = aioredis.from_url(settings.redis.url, encoding="utf-8", decode_responses=True)
        redis_client = RedisClient(raw_redis, namespace=settings.redis.namespace)
    try:
        yield build_session_factory(engine), redis_client
    finally:
        if raw_redis is not None:
            try:
                await raw_redis.aclose()
            except RedisError as exc:
                logger.warning("worker_redis_close_failed", error=str(exc))
        await engine.dispose()
