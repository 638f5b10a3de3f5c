import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from application.services.notification_dispatcher import NotificationDeliveryService, NotificationDispatcher
from domain.common.exceptions import SideEffectError
from domain.notification.entity import NotificationJob, NotificationKind, NotificationStatus
from infrastructure.external.notifications import HttpNotificationSender, NotificationDeliveryError
from infrastructure.tasks.tasks.notifications import retry_countdown
from infrastructure.unit_of_work import sqlalchemy_uow_factory


class FlakySender:

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def send(self, job: NotificationJob) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("relay unreachable")


class RejectingQueue:

    def submit(self, job_id: int) -> None:
        raise RuntimeError("broker down")


def _job(dedupe_key="evt_1", kind=NotificationKind.CONFIRMATION):
    return NotificationJob(id=None, order_id="O1", kind=kind, dedupe_key=dedupe_key, payload={"order_id": "O1"})


@pytest.mark.asyncio
async def test_enqueue_persists_and_submits(session_factory, queue):
    dispatcher = NotificationDispatcher(sqlalchemy_uow_factory(session_factory), queue)

    stored = await dispatcher.enqueue(_job())

    assert stored.id is not None
    assert stored.status is NotificationStatus.QUEUED
    assert queue.submitted == [stored.id]


@pytest.mark.asyncio
async def test_same_event_cannot_queue_the_same_notice_twice(session_factory, queue):
    dispatcher = NotificationDispatcher(sqlalchemy_uow_factory(session_factory), queue)

    first = await dispatcher.enqueue(_job())
    second = await dispatcher.enqueue(_job())
    other_kind = await dispatcher.enqueue(_job(kind=NotificationKind.OPERATOR_ALERT))

    assert first is not None
    assert second is None
    assert other_kind is not None
    assert queue.submitted == [first.id, other_kind.id]


@pytest.mark.asyncio
async def test_queue_failure_is_logged_not_raised_and_job_stays_queued(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    dispatcher = NotificationDispatcher(uow_factory, RejectingQueue())

    assert await dispatcher.enqueue(_job()) is None

    # The periodic resubmission picks the queued row up later
    resubmitter = NotificationDispatcher(uow_factory, queue)
    assert await resubmitter.resubmit_queued() == 1
    assert len(queue.submitted) == 1


@pytest.mark.asyncio
async def test_resubmit_skips_recently_submitted_jobs(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    await NotificationDispatcher(uow_factory, queue).enqueue_many([
        _job(), _job(kind=NotificationKind.OPERATOR_ALERT),
    ])
    submitted = list(queue.submitted)

    assert await NotificationDispatcher(uow_factory, queue).resubmit_queued(stale_after_seconds=900) == 0
    assert queue.submitted == submitted

    later = datetime.now(timezone.utc) + timedelta(seconds=901)
    sweeper = NotificationDispatcher(uow_factory, queue, clock=lambda: later)
    assert await sweeper.resubmit_queued(stale_after_seconds=900) == 2
    assert queue.submitted == submitted + submitted


@pytest.mark.asyncio
async def test_job_waiting_for_retry_is_not_resubmitted(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    stored = await NotificationDispatcher(uow_factory, queue).enqueue(_job())
    later = datetime.now(timezone.utc) + timedelta(seconds=1000)
    service = NotificationDeliveryService(uow_factory, FlakySender(failures=1), max_attempts=3, clock=lambda: later)

    with pytest.raises(SideEffectError):
        await service.deliver(stored.id)

    sweeper = NotificationDispatcher(uow_factory, queue, clock=lambda: later + timedelta(seconds=60))
    assert await sweeper.resubmit_queued(stale_after_seconds=900) == 0


@pytest.mark.asyncio
async def test_leased_job_is_not_sent_twice(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    stored = await NotificationDispatcher(uow_factory, queue).enqueue(_job())
    now = datetime.now(timezone.utc)
    # Another worker is mid-send
    async with uow_factory() as uow:
        assert await uow.notification_repository.claim(stored.id, now, now + timedelta(seconds=300))
    sender = FlakySender(failures=0)
    service = NotificationDeliveryService(uow_factory, sender, max_attempts=3)

    job = await service.deliver(stored.id)

    assert sender.calls == 0
    assert job.status is NotificationStatus.QUEUED
    assert job.attempts == 0

    # Once the lease expires the job can be delivered again
    expired = NotificationDeliveryService(
        uow_factory, sender, max_attempts=3, clock=lambda: now + timedelta(seconds=301)
    )
    assert (await expired.deliver(stored.id)).status is NotificationStatus.SENT
    assert sender.calls == 1


@pytest.mark.asyncio
async def test_delivery_marks_job_sent(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    stored = await NotificationDispatcher(uow_factory, queue).enqueue(_job())
    service = NotificationDeliveryService(uow_factory, FlakySender(failures=0), max_attempts=3)

    job = await service.deliver(stored.id)

    assert job.status is NotificationStatus.SENT
    assert job.attempts == 1
    # Already final: a duplicate task run does not send again
    assert (await service.deliver(stored.id)).status is NotificationStatus.SENT


@pytest.mark.asyncio
async def test_delivery_retries_then_dead_letters(session_factory, queue):
    uow_factory = sqlalchemy_uow_factory(session_factory)
    stored = await NotificationDispatcher(uow_factory, queue).enqueue(_job())
    sender = FlakySender(failures=10)
    service = NotificationDeliveryService(uow_factory, sender, max_attempts=3)

    for _ in range(2):
        with pytest.raises(SideEffectError):
            await service.deliver(stored.id)
    job = await service.deliver(stored.id)

    assert job.status is NotificationStatus.DEAD_LETTERED
    assert job.attempts == 3
    assert job.last_error == "relay unreachable"
    assert sender.calls == 3


@pytest.mark.asyncio
async def test_missing_job_is_skipped(session_factory):
    service = NotificationDeliveryService(sqlalchemy_uow_factory(session_factory), FlakySender(0), max_attempts=3)
    assert await service.deliver(12345) is None


@pytest.mark.asyncio
async def test_http_sender_posts_job_with_idempotency_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"accepted": True})

    sender = HttpNotificationSender(
        "https://relay.test/send",
        api_key="k1",
        transport=httpx.MockTransport(handler),
    )
    job = NotificationJob(id=7, order_id="O1", kind=NotificationKind.REFUND, dedupe_key="evt_2", payload={"a": 1})
    try:
        await sender.send(job)
    finally:
        await sender.aclose()

    assert len(seen) == 1
    assert seen[0].headers["Idempotency-Key"] == "notification-7"
    assert seen[0].headers["Authorization"] == "Bearer k1"
    assert json.loads(seen[0].content) == {"id": 7, "order_id": "O1", "kind": "refund", "payload": {"a": 1}}


@pytest.mark.asyncio
async def test_http_sender_retries_transport_errors_then_raises_on_error_status():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(503, text="maintenance")

    sender = HttpNotificationSender(
        "https://relay.test/send",
        retry={"max": 2, "base": 0.01},
        transport=httpx.MockTransport(handler),
    )
    job = NotificationJob(id=8, order_id="O1", kind=NotificationKind.FAILURE, dedupe_key="evt_3")
    with pytest.raises(NotificationDeliveryError) as exc_info:
        await sender.send(job)
    await sender.aclose()

    assert calls["n"] == 2
    assert exc_info.value.status_code == 503


@pytest.mark.parametrize("retries, ceiling", [(0, 30), (1, 60), (4, 480), (10, 600)])
def test_retry_countdown_has_jitter_and_cap(retries, ceiling):
    for _ in range(20):
        countdown = retry_countdown(retries, base=30, maximum=600)
        assert ceiling // 2 <= countdown <= ceiling
