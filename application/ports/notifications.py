"""
Notification ports: the queue that hands a persisted job to a worker, and
the sender a worker uses to deliver it.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.notification.entity import NotificationJob


@runtime_checkable
class NotificationQueue(Protocol):

    def submit(self, job_id: int) -> None: ...


@runtime_checkable
class NotificationSender(Protocol):

    async def send(self, job: NotificationJob) -> None:
        """Deliver one notification; raise on failure so the worker retries."""
        ...
