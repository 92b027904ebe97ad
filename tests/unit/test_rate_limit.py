import asyncio

import pytest

from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_limit() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=2, window_seconds=60)

    assert await limiter.allow("session-a", rule)
    assert await limiter.allow("session-a", rule)
    assert not await limiter.allow("session-a", rule)


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_window() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=1)

    assert await limiter.allow("session-b", rule)
    assert not await limiter.allow("session-b", rule)

    await asyncio.sleep(1.05)
    assert await limiter.allow("session-b", rule)


@pytest.mark.asyncio
async def test_rate_limiter_reports_retry_after() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=30)

    first = await limiter.hit("bid:7", rule)
    second = await limiter.hit("bid:7", rule)

    assert first.allowed
    assert not second.allowed
    assert 1 <= second.retry_after_seconds <= 30


@pytest.mark.asyncio
async def test_rate_limiter_keys_are_independent_and_resettable() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=60)

    assert await limiter.allow("message:session:a", rule)
    assert await limiter.allow("message:session:b", rule)
    assert not await limiter.allow("message:session:a", rule)

    await limiter.reset("message:session:a")
    assert await limiter.allow("message:session:a", rule)
