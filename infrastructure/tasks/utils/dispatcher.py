"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from ..config.celery import celery_app

DELIVER_NOTIFICATION_TASK = "notifications.deliver"
REPROCESS_DEFERRED_TASK = "webhooks.reprocess_deferred"


class TaskDispatcher:
    """
    Internal facade used by the application layer to schedule tasks.

    Serves as both the notification queue and the deferral scheduler; tasks
    are sent by name so callers never import task modules.
    """

    def submit(self, job_id: int) -> None:
        """Hand a persisted notification job to the delivery worker."""
        celery_app.send_task(DELIVER_NOTIFICATION_TASK, kwargs={"job_id": job_id}, queue="default")

    def schedule(self, event_id: str, delay_seconds: int) -> None:
        """Re-run a deferred webhook event after ``delay_seconds``."""
        celery_app.send_task(
            REPROCESS_DEFERRED_TASK,
            kwargs={"event_id": event_id},
            countdown=max(int(delay_seconds), 0),
            queue="high",
        )

