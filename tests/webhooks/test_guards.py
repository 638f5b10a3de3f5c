import pytest

from application.ports.idempotency import IdempotencyStoreUnavailable
from application.services.idempotency_guard import IdempotencyGuard
from application.services.replay_guard import ReplayGuard
from domain.common.exceptions import RateLimitExceededError
from infrastructure.stores import InMemoryIdempotencyStore, InMemorySlidingWindowLimiter


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore:

    async def exists(self, event_id: str) -> bool:
        raise IdempotencyStoreUnavailable("connection refused")

    async def claim(self, event_id: str, ttl_seconds: int) -> bool:
        raise IdempotencyStoreUnavailable("connection refused")


@pytest.mark.asyncio
async def test_sliding_window_blocks_after_limit_and_reports_retry_after():
    clock = FakeClock()
    limiter = InMemorySlidingWindowLimiter(clock=clock)
    guard = ReplayGuard(limiter, limit=3, window_seconds=60)

    for _ in range(3):
        await guard.check("203.0.113.7")
        clock.now += 1

    with pytest.raises(RateLimitExceededError) as exc_info:
        await guard.check("203.0.113.7")
    # Oldest marker at t=1000 leaves the window at t=1060; now is 1003
    assert exc_info.value.retry_after == 57


@pytest.mark.asyncio
async def test_sliding_window_is_per_source_and_slides():
    clock = FakeClock()
    limiter = InMemorySlidingWindowLimiter(clock=clock)
    guard = ReplayGuard(limiter, limit=1, window_seconds=10)

    await guard.check("a")
    await guard.check("b")
    with pytest.raises(RateLimitExceededError):
        await guard.check("a")

    clock.now += 10
    await guard.check("a")


@pytest.mark.asyncio
async def test_rejected_requests_do_not_consume_the_window():
    clock = FakeClock()
    limiter = InMemorySlidingWindowLimiter(clock=clock)

    assert (await limiter.hit("k", 1, 10)).allowed
    for _ in range(5):
        assert not (await limiter.hit("k", 1, 10)).allowed
    clock.now += 10
    assert (await limiter.hit("k", 1, 10)).allowed


@pytest.mark.asyncio
async def test_idle_sources_are_forgotten_after_a_window():
    clock = FakeClock()
    limiter = InMemorySlidingWindowLimiter(clock=clock)

    for n in range(50):
        await limiter.hit(f"198.51.100.{n}", 5, 60)
    assert len(limiter._hits) == 50

    clock.now += 60
    await limiter.hit("203.0.113.7", 5, 60)

    assert list(limiter._hits) == ["203.0.113.7"]


@pytest.mark.asyncio
async def test_claim_is_first_writer_wins():
    guard = IdempotencyGuard(InMemoryIdempotencyStore(), ttl_seconds=60)

    assert not (await guard.check("evt_1")).already_processed
    assert not (await guard.check_and_claim("evt_1")).already_processed
    assert (await guard.check_and_claim("evt_1")).already_processed
    assert (await guard.check("evt_1")).already_processed


@pytest.mark.asyncio
async def test_idempotency_keys_expire_after_ttl():
    clock = FakeClock()
    guard = IdempotencyGuard(InMemoryIdempotencyStore(clock=clock), ttl_seconds=60)

    await guard.check_and_claim("evt_1")
    clock.now += 61
    assert not (await guard.check("evt_1")).already_processed


@pytest.mark.asyncio
async def test_unavailable_store_fails_open():
    guard = IdempotencyGuard(BrokenStore(), ttl_seconds=60)

    check = await guard.check("evt_1")
    assert check.already_processed is False
    assert check.store_available is False

    claim = await guard.check_and_claim("evt_1")
    assert claim.already_processed is False
    assert claim.store_available is False
