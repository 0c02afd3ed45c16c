"""
Tests for the single-flight outcome cache.
"""

import asyncio

import pytest

from app.services.single_flight_cache import OutcomeState, SingleFlightAsyncCache


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_producer():
    cache = SingleFlightAsyncCache("test", max_concurrency=4, timeout_seconds=5)
    calls = {"count": 0}
    release = asyncio.Event()

    async def producer():
        calls["count"] += 1
        await release.wait()
        return "sent"

    observations = await asyncio.gather(
        *(cache.get_or_start("ticket-1", producer) for _ in range(20))
    )
    assert all(obs.state is OutcomeState.RUNNING for obs in observations)

    release.set()
    finals = await asyncio.gather(*(cache.wait("ticket-1", timeout=1) for _ in range(20)))

    assert calls["count"] == 1
    assert all(obs.state is OutcomeState.DONE for obs in finals)
    assert {obs.value for obs in finals} == {"sent"}


@pytest.mark.asyncio
async def test_terminal_outcome_is_returned_without_rerunning():
    cache = SingleFlightAsyncCache("test")
    calls = {"count": 0}

    async def producer():
        calls["count"] += 1
        return calls["count"]

    await cache.get_or_start("k", producer)
    await cache.wait("k", timeout=1)

    again = await cache.get_or_start("k", producer)

    assert again.state is OutcomeState.DONE
    assert again.value == 1
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_consume_removes_outcome_and_allows_fresh_run():
    cache = SingleFlightAsyncCache("test")
    calls = {"count": 0}

    async def producer():
        calls["count"] += 1
        return calls["count"]

    await cache.get_or_start("k", producer)
    await cache.wait("k", timeout=1)

    consumed = await cache.consume("k")
    assert consumed.value == 1
    assert await cache.observe("k") is None
    assert await cache.consume("k") is None

    await cache.get_or_start("k", producer)
    second = await cache.wait("k", timeout=1)

    assert second.value == 2
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_running_outcome_cannot_be_consumed():
    cache = SingleFlightAsyncCache("test")
    release = asyncio.Event()

    async def producer():
        await release.wait()
        return "done"

    await cache.get_or_start("k", producer)

    assert await cache.consume("k") is None
    assert (await cache.observe("k")).state is OutcomeState.RUNNING

    release.set()
    assert (await cache.wait("k", timeout=1)).succeeded


@pytest.mark.asyncio
async def test_failure_is_recorded():
    cache = SingleFlightAsyncCache("test")

    async def producer():
        raise ConnectionRefusedError("nope")

    await cache.get_or_start("k", producer)
    observation = await cache.wait("k", timeout=1)

    assert observation.state is OutcomeState.FAILED
    assert isinstance(observation.error, ConnectionRefusedError)
    assert observation.terminal
    assert not observation.succeeded


@pytest.mark.asyncio
async def test_producer_timeout_fails_the_entry():
    cache = SingleFlightAsyncCache("test", timeout_seconds=0.05)

    async def producer():
        await asyncio.sleep(10)

    await cache.get_or_start("k", producer)
    observation = await cache.wait("k", timeout=1)

    assert observation.state is OutcomeState.FAILED
    assert isinstance(observation.error, TimeoutError)


@pytest.mark.asyncio
async def test_wait_returns_running_when_producer_is_slow():
    cache = SingleFlightAsyncCache("test")
    release = asyncio.Event()

    async def producer():
        await release.wait()

    await cache.get_or_start("k", producer)
    observation = await cache.wait("k", timeout=0.01)

    assert observation.state is OutcomeState.RUNNING
    assert await cache.wait("missing", timeout=0.01) is None

    release.set()
    await cache.wait("k", timeout=1)


@pytest.mark.asyncio
async def test_semaphore_bounds_concurrent_producers():
    cache = SingleFlightAsyncCache("test", max_concurrency=2)
    active = {"now": 0, "peak": 0}

    async def producer():
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.02)
        active["now"] -= 1

    for i in range(6):
        await cache.get_or_start(f"k{i}", producer)
    for i in range(6):
        await cache.wait(f"k{i}", timeout=2)

    assert active["peak"] <= 2


@pytest.mark.asyncio
async def test_unconsumed_outcomes_are_purged_after_ttl():
    cache = SingleFlightAsyncCache("test", result_ttl_seconds=0)

    async def producer():
        return "x"

    await cache.get_or_start("k", producer)
    await cache.wait("k", timeout=1)
    await asyncio.sleep(0.01)

    assert await cache.purge_expired() == 1
    assert await cache.observe("k") is None


@pytest.mark.asyncio
async def test_snapshot_and_close():
    cache = SingleFlightAsyncCache("test")
    release = asyncio.Event()

    async def producer():
        await release.wait()

    await cache.get_or_start("a", producer)
    snapshot = await cache.snapshot()

    assert snapshot["cache"] == "test"
    assert snapshot["entries"] == 1
    assert snapshot["running"] == 1

    await cache.close()
    assert (await cache.snapshot())["entries"] == 0


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        SingleFlightAsyncCache("test", max_concurrency=0)
    with pytest.raises(ValueError):
        SingleFlightAsyncCache("test", timeout_seconds=0)
