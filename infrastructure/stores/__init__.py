"""Redis-backed and in-memory stores for the webhook pipeline."""
from .deferral_tracker import InMemoryDeferralTracker, RedisDeferralTracker
from .idempotency_store import InMemoryIdempotencyStore, RedisIdempotencyStore
from .rate_limiter import InMemorySlidingWindowLimiter, RedisSlidingWindowLimiter

__all__ = [
    "InMemoryDeferralTracker",
    "RedisDeferralTracker",
    "InMemoryIdempotencyStore",
    "RedisIdempotencyStore",
    "InMemorySlidingWindowLimiter",
    "RedisSlidingWindowLimiter",
]
