"""Rate limiter tests."""

import pytest

from jobrelay.config import RateLimitConfig
from jobrelay.errors import RateLimitedError
from jobrelay.ratelimit import InMemoryRateLimiter, RedisRateLimiter, get_rate_limiter


class FakeRedis:
    def __init__(self, monotonic):
        self.monotonic = monotonic
        self.keys = {}

    async def set(self, key, value, nx=False, px=None):
        expires = self.keys.get(key)
        if nx and expires is not None and expires > self.monotonic():
            return None
        self.keys[key] = self.monotonic() + px / 1000
        return True

    async def pttl(self, key):
        expires = self.keys.get(key)
        if expires is None:
            return -2
        return int((expires - self.monotonic()) * 1000)


@pytest.mark.asyncio
async def test_second_call_within_interval_is_limited(monotonic):
    limiter = InMemoryRateLimiter(10, clock=monotonic)

    await limiter.acquire("terminate")
    monotonic.advance(3)
    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.acquire("terminate")
    assert exc_info.value.retry_after == pytest.approx(7)
    assert exc_info.value.status_code == 429

    assert await limiter.try_acquire("mark_success")
    monotonic.advance(7)
    assert await limiter.try_acquire("terminate")


@pytest.mark.asyncio
async def test_denied_calls_do_not_reset_the_window(monotonic):
    limiter = InMemoryRateLimiter(10, clock=monotonic)
    assert await limiter.try_acquire()
    monotonic.advance(9)
    assert not await limiter.try_acquire()
    monotonic.advance(1)
    assert await limiter.try_acquire()


@pytest.mark.asyncio
async def test_redis_limiter_uses_set_nx_px(monotonic):
    limiter = RedisRateLimiter(10, client=FakeRedis(monotonic))

    assert await limiter.try_acquire("terminate")
    monotonic.advance(4)
    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.acquire("terminate")
    assert exc_info.value.retry_after == pytest.approx(6, abs=0.01)
    monotonic.advance(6)
    assert await limiter.try_acquire("terminate")


def test_factory_follows_config():
    assert isinstance(get_rate_limiter(), InMemoryRateLimiter)
    limiter = get_rate_limiter(RateLimitConfig(backend="redis", min_interval_seconds=5))
    assert isinstance(limiter, RedisRateLimiter)
    assert limiter.min_interval == 5
