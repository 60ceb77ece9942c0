"""Tests for the token bucket.

Refill math is checked against a fake clock; ordering and cancellation run
against the real event loop with short intervals.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from crawljobs.crawler.errors import RateLimitError
from crawljobs.crawler.rate_limiter import TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestConstruction:
    @pytest.mark.parametrize("rate", [0, -1, None])
    def test_rejects_non_positive_rate(self, rate):
        with pytest.raises(RateLimitError):
            TokenBucket(rate)

    def test_rejects_capacity_below_one_token(self):
        with pytest.raises(RateLimitError):
            TokenBucket(5, capacity=0.5)


class TestRefill:
    def test_starts_full_and_refills_continuously(self):
        clock = FakeClock()
        bucket = TokenBucket(4, capacity=2, clock=clock)
        assert bucket.available_tokens == 2

        bucket._tokens = 0
        clock.now += 0.25
        assert bucket.available_tokens == pytest.approx(1.0)

        clock.now += 10
        assert bucket.available_tokens == 2

    async def test_burst_up_to_capacity_is_immediate(self):
        clock = FakeClock()
        bucket = TokenBucket(1, capacity=3, clock=clock)

        results = [await asyncio.wait_for(bucket.acquire(), 0.1) for _ in range(3)]

        assert results == [True, True, True]
        assert bucket.stats["granted"] == 3


class TestAcquire:
    async def test_steady_rate_after_burst(self):
        bucket = TokenBucket(20)
        starts = []
        for _ in range(5):
            await bucket.acquire()
            starts.append(time.monotonic())

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    async def test_waiters_are_served_in_arrival_order(self):
        bucket = TokenBucket(50)
        await bucket.acquire()
        order = []

        async def waiter(name):
            await bucket.acquire()
            order.append(name)

        tasks = []
        for name in range(5):
            tasks.append(asyncio.create_task(waiter(name)))
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)

        assert order == [0, 1, 2, 3, 4]

    async def test_cancelled_event_aborts_wait_without_consuming(self):
        bucket = TokenBucket(0.1)
        await bucket.acquire()
        cancelled = asyncio.Event()

        pending = asyncio.create_task(bucket.acquire(cancelled))
        await asyncio.sleep(0.01)
        cancelled.set()

        assert await asyncio.wait_for(pending, 1) is False
        assert bucket.stats["aborted"] == 1
        assert bucket.stats["granted"] == 1

    async def test_already_cancelled_returns_immediately(self):
        bucket = TokenBucket(1)
        cancelled = asyncio.Event()
        cancelled.set()

        assert await bucket.acquire(cancelled) is False
        assert bucket.available_tokens == 1

    async def test_window_never_exceeds_rate_plus_one(self):
        rate = 25
        bucket = TokenBucket(rate)
        starts = []

        async def worker():
            for _ in range(8):
                await bucket.acquire()
                starts.append(time.monotonic())

        await asyncio.gather(*[worker() for _ in range(4)])

        starts.sort()
        for i, start in enumerate(starts):
            assert len([t for t in starts[i:] if t - start < 1.0]) <= rate + 1


class TestQueueCancellation:
    async def test_cancelled_waiter_leaves_without_waiting_its_turn(self):
        bucket = TokenBucket(1)
        await bucket.acquire()
        head = asyncio.create_task(bucket.acquire())
        await asyncio.sleep(0)
        cancelled = asyncio.Event()
        queued = asyncio.create_task(bucket.acquire(cancelled))
        await asyncio.sleep(0.01)
        assert bucket.queued == 2

        cancelled.set()

        assert await asyncio.wait_for(queued, 0.1) is False
        assert bucket.queued == 1
        assert await asyncio.wait_for(head, 2) is True
        assert bucket.queued == 0

    async def test_next_waiter_takes_over_when_head_cancels(self):
        bucket = TokenBucket(20)
        await bucket.acquire()
        cancelled = asyncio.Event()
        head = asyncio.create_task(bucket.acquire(cancelled))
        await asyncio.sleep(0)
        follower = asyncio.create_task(bucket.acquire())
        await asyncio.sleep(0)

        cancelled.set()

        assert await asyncio.wait_for(head, 0.1) is False
        assert await asyncio.wait_for(follower, 0.5) is True
        assert bucket.stats["aborted"] == 1

    async def test_task_cancellation_releases_its_place(self):
        bucket = TokenBucket(20)
        await bucket.acquire()
        head = asyncio.create_task(bucket.acquire())
        await asyncio.sleep(0)
        follower = asyncio.create_task(bucket.acquire())
        await asyncio.sleep(0)

        head.cancel()

        assert await asyncio.wait_for(follower, 0.5) is True
        assert head.cancelled()
        assert bucket.queued == 0
