"""
Tests for the periodic expiry sweeper.
"""
import asyncio

import pytest

from app.services.rate_limiter import RateLimiter
from app.stores.sweeper import ExpirySweeper

IP = "203.0.113.7"


class FailingStore:
    namespace = "broken"

    async def purge_expired(self):
        raise ConnectionError("store down")


class TestSweep:
    @pytest.mark.asyncio
    async def test_memory_rows_stay_bounded_across_windows(self, stores, clock):
        limiter = RateLimiter(stores.rate_limit, limit=100, window_seconds=60, clock=clock)
        sweeper = ExpirySweeper(stores.all(), interval_seconds=60)

        for _ in range(50):
            await limiter.check(IP)
            clock.advance(60)
            await sweeper.sweep()
            assert len(stores.rate_limit) <= 1

        assert len(stores.rate_limit) == 0

    @pytest.mark.asyncio
    async def test_failing_store_does_not_stop_the_others(self, stores, clock):
        await stores.cache.put("k", "v", ttl_seconds=5)
        clock.advance(10)

        sweeper = ExpirySweeper([FailingStore(), stores.cache])
        assert await sweeper.sweep() == 1
        assert len(stores.cache) == 0

    def test_interval_must_be_positive(self, stores):
        with pytest.raises(ValueError):
            ExpirySweeper(stores.all(), interval_seconds=0)


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_purges_on_every_tick_until_stopped(self, stores, clock):
        ticks: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            clock.advance(seconds)
            ticks.append(seconds)
            await asyncio.sleep(0)

        await stores.rate_limit.increment(f"{IP}:0", ttl_seconds=30)
        await stores.cache.put("entry:abc", "{}", ttl_seconds=30)
        await stores.usage.put("2025-10", "{}")

        sweeper = ExpirySweeper(stores.all(), interval_seconds=60, sleep=fake_sleep)
        task = sweeper.start()
        assert sweeper.running

        while len(ticks) < 3:
            await asyncio.sleep(0)

        assert len(stores.rate_limit) == 0
        assert len(stores.cache) == 0
        assert len(stores.usage) == 1

        await sweeper.stop()
        assert task.cancelled()
        assert not sweeper.running
        assert ticks == [60, 60, 60]

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, stores):
        sweeper = ExpirySweeper(stores.all(), interval_seconds=3600)
        sweeper.start()
        try:
            with pytest.raises(RuntimeError):
                sweeper.start()
        finally:
            await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_no_op(self, stores):
        await ExpirySweeper(stores.all()).stop()
