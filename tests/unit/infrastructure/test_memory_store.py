import pytest

from airavat.domain.rate_limiting import RateLimitRule, TokenBucketState
from airavat.infrastructure.rate_limiting import MemoryRateLimitStore

RULE = RateLimitRule("burst", points=2, window_seconds=10)


@pytest.mark.asyncio
async def test_window_counts_and_expires(memory_store, clock):
    first = await memory_store.hit_window("k", RULE)
    clock.advance(4)
    second = await memory_store.hit_window("k", RULE)

    assert (first.consumed, first.resets_in) == (1, 10)
    assert (second.consumed, second.resets_in) == (2, 6)

    clock.advance(6)
    assert (await memory_store.hit_window("k", RULE)).consumed == 1


@pytest.mark.asyncio
async def test_bucket_round_trip_and_expiry(memory_store, clock):
    await memory_store.save_bucket("k", TokenBucketState(tokens=1.5, last_refill=clock()), ttl_seconds=5)

    assert await memory_store.get_bucket("k") == TokenBucketState(tokens=1.5, last_refill=clock())

    clock.advance(5)
    assert await memory_store.get_bucket("k") is None


@pytest.mark.asyncio
async def test_sweep_drops_expired_entries(clock):
    store = MemoryRateLimitStore(clock=clock, max_keys=3)
    for key in ("a", "b", "c"):
        await store.hit_window(key, RULE)

    clock.advance(10)
    await store.hit_window("d", RULE)

    assert (await store.health_check())["keys"] == 1


@pytest.mark.asyncio
async def test_health_check(memory_store):
    assert await memory_store.health_check() == {"status": "healthy", "backend": "memory", "keys": 0}


@pytest.mark.asyncio
async def test_sliding_window_counts_hits_in_trailing_window(memory_store, clock):
    first = await memory_store.hit_sliding_window("k", RULE)
    clock.advance(4)
    second = await memory_store.hit_sliding_window("k", RULE)
    clock.advance(1)
    denied = await memory_store.hit_sliding_window("k", RULE)

    assert (first.consumed, first.resets_in) == (1, 10)
    assert (second.consumed, second.resets_in) == (2, 6)
    assert denied.consumed == 3
    assert denied.resets_in == 5
    assert denied.blocked is False

    # Only the first hit has aged out; the denied request was not recorded.
    clock.advance(5)
    again = await memory_store.hit_sliding_window("k", RULE)
    assert (again.consumed, again.resets_in) == (2, 4)
    assert (await memory_store.hit_sliding_window("k", RULE)).consumed == 3


@pytest.mark.asyncio
async def test_sliding_window_block_penalty(memory_store, clock):
    rule = RateLimitRule("endpoint:/api/v1/upload", points=1, window_seconds=10, block_duration_seconds=30)

    assert (await memory_store.hit_sliding_window("k", rule)).blocked is False
    blocked = await memory_store.hit_sliding_window("k", rule)
    assert (blocked.blocked, blocked.resets_in) == (True, 30)

    clock.advance(20)
    still_blocked = await memory_store.hit_sliding_window("k", rule)
    assert (still_blocked.blocked, still_blocked.resets_in) == (True, 10)

    assert await memory_store.reset("k") is True
    assert (await memory_store.hit_sliding_window("k", rule)).blocked is False


@pytest.mark.asyncio
async def test_sweep_runs_at_most_once_per_interval(clock):
    rule = RateLimitRule("burst", points=2, window_seconds=1)
    store = MemoryRateLimitStore(clock=clock, max_keys=2, sweep_interval=5)
    await store.hit_window("a", rule)
    await store.hit_window("b", rule)

    clock.advance(1)
    await store.hit_window("c", rule)
    await store.hit_window("d", rule)
    assert (await store.health_check())["keys"] == 2

    clock.advance(1)
    await store.hit_window("e", rule)
    assert (await store.health_check())["keys"] == 3

    clock.advance(4)
    await store.hit_window("f", rule)
    assert (await store.health_check())["keys"] == 1


@pytest.mark.asyncio
async def test_oldest_counters_are_evicted_past_max_keys(clock):
    store = MemoryRateLimitStore(clock=clock, max_keys=3)
    for key in ("a", "b", "c", "d"):
        await store.hit_window(key, RULE)

    clock.advance(1)
    await store.hit_window("e", RULE)

    assert (await store.hit_window("a", RULE)).consumed == 1
    assert (await store.hit_window("b", RULE)).consumed == 2


@pytest.mark.asyncio
async def test_eviction_keeps_block_penalties(clock):
    rule = RateLimitRule("endpoint:/api/v1/auth/login", points=1, window_seconds=10, block_duration_seconds=60)
    store = MemoryRateLimitStore(clock=clock, max_keys=2)
    await store.hit_window("x", rule)
    assert (await store.hit_window("x", rule)).blocked is True

    await store.hit_window("y", rule)
    clock.advance(1)
    await store.hit_window("z", rule)

    state = await store.hit_window("x", rule)
    assert state.blocked is True
    assert state.resets_in == 59
