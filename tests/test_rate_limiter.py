"""
Tests for the per-user fixed-window rate limiter.
"""
import asyncio

import pytest

from pingchat.core.errors import NetworkUnavailable, RateLimitExceeded
from pingchat.repositories.rate_limits import RateLimitRepository
from pingchat.services.rate_limiter import MESSAGE, PING, RateLimiter

from tests.support import make_settings


@pytest.fixture
def limiter(session_factory, settings, clock):
    return RateLimiter(RateLimitRepository(session_factory), settings, clock=clock)


class UnreachableRepository:
    """Every call fails as if the store were offline."""

    async def try_increment(self, *args, **kwargs):
        raise NetworkUnavailable("Store unreachable")

    async def get(self, *args, **kwargs):
        raise NetworkUnavailable("Store unreachable")


async def test_allows_up_to_capacity_then_refuses(limiter):
    decisions = [await limiter.check_limit("alice", PING) for _ in range(5)]
    assert all(d.allowed for d in decisions)

    refused = await limiter.check_limit("alice", PING)
    assert not refused.allowed
    assert refused.retry_after_ms == 86400 * 1000


async def test_window_boundary_resets_count(limiter, clock):
    for _ in range(5):
        await limiter.enforce("alice", PING)

    clock.advance(hours=23, minutes=59)
    refused = await limiter.check_limit("alice", PING)
    assert not refused.allowed
    assert refused.retry_after_ms == 60 * 1000

    clock.advance(minutes=1)
    assert (await limiter.check_limit("alice", PING)).allowed
    assert await limiter.remaining("alice", PING) == 4


async def test_users_and_action_kinds_are_independent(limiter):
    for _ in range(5):
        await limiter.enforce("alice", PING)

    assert (await limiter.check_limit("bob", PING)).allowed
    assert (await limiter.check_limit("alice", MESSAGE)).allowed


async def test_enforce_raises_with_retry_after(limiter, clock):
    for _ in range(5):
        await limiter.enforce("alice", PING)
    clock.advance(hours=12)

    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.enforce("alice", PING)
    assert exc_info.value.retry_after_ms == 12 * 3600 * 1000
    assert exc_info.value.status_code == 429


async def test_concurrent_checks_never_exceed_capacity(limiter):
    # Same user on several devices at once
    decisions = await asyncio.gather(*(limiter.check_limit("alice", PING) for _ in range(8)))
    assert sum(1 for d in decisions if d.allowed) == 5
    assert await limiter.remaining("alice", PING) == 0


async def test_remaining_and_reset(limiter):
    assert await limiter.remaining("alice", MESSAGE) == 30
    await limiter.enforce("alice", MESSAGE)
    await limiter.enforce("alice", MESSAGE)
    assert await limiter.remaining("alice", MESSAGE) == 28

    await limiter.reset("alice")
    assert await limiter.remaining("alice", MESSAGE) == 30


async def test_unknown_action_kind(limiter):
    with pytest.raises(ValueError):
        await limiter.check_limit("alice", "rename")


async def test_unreachable_store_fails_closed_by_default(settings, clock):
    limiter = RateLimiter(UnreachableRepository(), settings, clock=clock)
    decision = await limiter.check_limit("alice", PING)
    assert not decision.allowed
    assert decision.retry_after_ms == 86400 * 1000


async def test_unreachable_store_can_fail_open(tmp_path, clock):
    settings = make_settings(tmp_path, rate_limit_fail_open=True)
    limiter = RateLimiter(UnreachableRepository(), settings, clock=clock)
    assert (await limiter.check_limit("alice", PING)).allowed


class RacingRepository:
    """Lets a second device win the first create or rollover of a window."""

    def __init__(self, inner, clock):
        self.inner = inner
        self.clock = clock
        self.raced = False

    async def try_increment(self, username, action_kind, cutoff, capacity):
        if not self.raced and await self.inner.get(username, action_kind) is None:
            self.raced = True
            await self.inner.try_create(username, action_kind, self.clock())
            return False
        return await self.inner.try_increment(username, action_kind, cutoff, capacity)

    async def try_rollover(self, username, action_kind, cutoff, now):
        if not self.raced:
            self.raced = True
            await self.inner.try_rollover(username, action_kind, cutoff, now)
        return await self.inner.try_rollover(username, action_kind, cutoff, now)

    async def get(self, username, action_kind):
        return await self.inner.get(username, action_kind)

    async def try_create(self, username, action_kind, now):
        return await self.inner.try_create(username, action_kind, now)


async def test_lost_first_window_race_is_still_admitted(session_factory, settings, clock):
    racing = RacingRepository(RateLimitRepository(session_factory), clock)
    limiter = RateLimiter(racing, settings, clock=clock)

    assert (await limiter.check_limit("alice", MESSAGE)).allowed
    assert racing.raced
    assert await limiter.remaining("alice", MESSAGE) == 28


async def test_lost_rollover_race_is_still_admitted(session_factory, settings, clock):
    repository = RateLimitRepository(session_factory)
    for _ in range(30):
        await RateLimiter(repository, settings, clock=clock).enforce("alice", MESSAGE)
    clock.advance(seconds=61)

    racing = RacingRepository(repository, clock)
    limiter = RateLimiter(racing, settings, clock=clock)

    assert (await limiter.check_limit("alice", MESSAGE)).allowed
    assert racing.raced
    assert await limiter.remaining("alice", MESSAGE) == 28


async def test_concurrent_first_window_checks_are_all_admitted(limiter):
    decisions = await asyncio.gather(*(limiter.check_limit("alice", MESSAGE) for _ in range(4)))
    assert all(d.allowed for d in decisions)
    assert await limiter.remaining("alice", MESSAGE) == 26


async def test_concurrent_rollover_checks_are_all_admitted(limiter, clock):
    for _ in range(30):
        await limiter.enforce("alice", MESSAGE)
    clock.advance(seconds=61)

    decisions = await asyncio.gather(*(limiter.check_limit("alice", MESSAGE) for _ in range(4)))
    assert all(d.allowed for d in decisions)
    assert await limiter.remaining("alice", MESSAGE) == 26
