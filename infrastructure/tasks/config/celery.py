"""Celery application configuration"""
from __future__ import annotations

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


# Task modules are discovered via this tuple so new packages only need to be
# listed here rather than altering the runtime imports scattered elsewhere.
CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)


celery_app = Celery("storefront_fulfillment")

celery_app.conf.update(
    # Broker/result backend fall back to the Redis URL
    broker_url=settings.celery.broker_url or settings.redis.url,
    result_backend=settings.celery.result_backend or settings.redis.url,
    # JSON keeps payloads interoperable and avoids arbitrary code execution.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Ensure acknowledgements happen after work is done so retries are possible.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    # Auto-expire stale results to keep the backend tidy.
    result_expires=3600,
    # Avoid the worker grabbing more than it can process, aiding fairness.
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    task_routes={
        "webhooks.*": {"queue": "high"},
        "notifications.*": {"queue": "default"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

# Eager mode runs tasks inline; only enable it explicitly, since task bodies
# call asyncio.run and cannot execute inside a running event loop.
if settings.celery.always_eager:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


logger = get_logger(__name__)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Route worker logs through the structlog pipeline instead of Celery's own handlers
    configure_logging()


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queues=[q.name for q in sender.conf.task_queues])
