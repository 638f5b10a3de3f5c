"""Celery beat schedule configuration.

Periodic sweeps pick up work whose immediate hand-off was lost: deferred
webhook events that are due, and notification jobs still queued.
"""
from __future__ import annotations

CELERY_BEAT_SCHEDULE = {
    "webhooks-sweep-deferred": {
        "task": "webhooks.sweep_deferred",
        "schedule": 60.0,
    },
    "notifications-resubmit-queued": {
        "task": "notifications.resubmit_queued",
        "schedule": 300.0,
    },
}
