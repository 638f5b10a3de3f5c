"""
Notification senders used by the delivery worker.

The mailer/SMS relay itself is an external collaborator; we only POST the
job to it. Transient transport errors are retried in-process with tenacity;
anything else surfaces to the Celery task, which has its own retry budget.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from domain.notification.entity import NotificationJob

logger = get_logger(__name__)


class NotificationDeliveryError(Exception):
    """Relay answered with a non-success status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        super().__init__(f"notification relay returned {status_code}: {body[:200]}")


class HttpNotificationSender:

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds)
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        yield self._client

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    def _headers(self, job: NotificationJob) -> dict[str, str]:
        headers = {"Idempotency-Key": f"notification-{job.id}"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def send(self, job: NotificationJob) -> None:
        body = {
            "id": job.id,
            "order_id": job.order_id,
            "kind": job.kind.value,
            "payload": job.payload,
        }

        async def _post() -> httpx.Response:
            async with self.client() as client:
                return await client.post(self._endpoint, json=body, headers=self._headers(job))

        response = await self._retry(_post)
        if response.status_code >= 400:
            raise NotificationDeliveryError(response.status_code, response.text)
        logger.info("notification_relay_accepted", job_id=job.id, kind=job.kind.value, status_code=response.status_code)


class LoggingNotificationSender:
    """Used when no relay endpoint is configured: the notice is only logged."""

    async def send(self, job: NotificationJob) -> None:
        logger.info(
            "notification_logged",
            job_id=job.id,
            order_id=job.order_id,
            kind=job.kind.value,
            payload=job.payload,
        )


def build_notification_sender(settings) -> HttpNotificationSender | LoggingNotificationSender:
    """Pick the sender from NotificationSettings."""
    if settings.endpoint:
        return HttpNotificationSender(
            settings.endpoint,
            api_key=settings.api_key,
            timeout_seconds=settings.timeout_seconds,
        )
    return LoggingNotificationSender()
