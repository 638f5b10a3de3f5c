import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from application.ports.deferral import DeferralTrackerUnavailable
from application.ports.idempotency import IdempotencyStoreUnavailable
from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.stores import RedisDeferralTracker, RedisIdempotencyStore, RedisSlidingWindowLimiter


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the single-key commands."""

    def __init__(self):
        self.data = {}
        self.expiries = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex:
            self.expiries[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def exists(self, key):
        return int(key in self.data)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.data.pop(key, None) is not None)
        return removed


class DownRedis:

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def exists(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


class ScriptedClient:
    """RedisClient stand-in returning canned sliding-window / counter results."""

    def __init__(self, window_result=None, error=None):
        self.window_result = window_result
        self.error = error
        self.counters = {}
        self.calls = []

    async def sliding_window_hit(self, key, window_seconds, limit, now=None):
        self.calls.append((key, window_seconds, limit, now))
        if self.error:
            raise self.error
        return self.window_result

    async def incr(self, key, amount=1, ttl=None):
        if self.error:
            raise self.error
        self.counters[key] = self.counters.get(key, 0) + amount
        return self.counters[key]

    async def delete(self, *keys):
        if self.error:
            raise self.error
        for key in keys:
            self.counters.pop(key, None)
        return len(keys)


@pytest.mark.asyncio
async def test_idempotency_claim_uses_namespaced_set_nx_with_ttl():
    raw = FakeRedis()
    store = RedisIdempotencyStore(RedisClient(raw, namespace="storefront"))

    assert await store.claim("evt_1", 259200) is True
    assert await store.claim("evt_1", 259200) is False
    assert await store.exists("evt_1") is True
    assert raw.expiries == {"storefront:webhook:event:evt_1": 259200}


@pytest.mark.asyncio
async def test_idempotency_store_reports_unavailable():
    store = RedisIdempotencyStore(RedisClient(DownRedis()))

    with pytest.raises(IdempotencyStoreUnavailable):
        await store.exists("evt_1")
    with pytest.raises(IdempotencyStoreUnavailable):
        await store.claim("evt_1", 60)


@pytest.mark.asyncio
async def test_redis_limiter_rejects_with_retry_after():
    client = ScriptedClient(window_result=(False, 5, 100.0))
    limiter = RedisSlidingWindowLimiter(client, clock=lambda: 130.0)

    decision = await limiter.hit("203.0.113.7", 5, 60)

    assert decision.allowed is False
    assert decision.retry_after == 30
    assert client.calls == [("webhook:ratelimit:203.0.113.7", 60, 5, 130.0)]


@pytest.mark.asyncio
async def test_redis_limiter_fails_open():
    limiter = RedisSlidingWindowLimiter(ScriptedClient(error=RedisConnectionError("down")))

    decision = await limiter.hit("203.0.113.7", 5, 60)

    assert decision.allowed is True


@pytest.mark.asyncio
async def test_deferral_tracker_counts_and_resets():
    client = ScriptedClient()
    tracker = RedisDeferralTracker(client)

    assert await tracker.increment("evt_2", 3600) == 1
    assert await tracker.increment("evt_2", 3600) == 2
    await tracker.reset("evt_2")
    assert await tracker.increment("evt_2", 3600) == 1


@pytest.mark.asyncio
async def test_deferral_tracker_reports_unavailable():
    tracker = RedisDeferralTracker(ScriptedClient(error=RedisConnectionError("down")))

    with pytest.raises(DeferralTrackerUnavailable):
        await tracker.increment("evt_2", 3600)
