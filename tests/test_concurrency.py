import asyncio

import pytest

from provenance.concurrency import bounded_map


def test_results_follow_input_order():
    async def slow_square(n):
        await asyncio.sleep(0.01 * (5 - n))
        return n * n

    assert asyncio.run(bounded_map([1, 2, 3, 4], slow_square, concurrency=4)) == [1, 4, 9, 16]


def test_never_exceeds_concurrency():
    in_flight = 0
    peak = 0

    async def track(n):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.005)
        in_flight -= 1
        return n

    assert asyncio.run(bounded_map(list(range(10)), track, concurrency=3)) == list(range(10))
    assert peak == 3


def test_first_failure_propagates_and_stops_pending_work():
    started = []

    async def flaky(n):
        started.append(n)
        await asyncio.sleep(0.01)
        if n == 2:
            raise ValueError("week 2 failed")
        return n

    with pytest.raises(ValueError, match="week 2 failed"):
        asyncio.run(bounded_map([1, 2, 3, 4], flaky, concurrency=1))
    assert started[:2] == [1, 2]
    assert 4 not in started


def test_empty_input():
    async def never(n):
        raise AssertionError("not called")

    assert asyncio.run(bounded_map([], never, concurrency=2)) == []


def test_rejects_zero_concurrency():
    async def identity(n):
        return n

    with pytest.raises(ValueError):
        asyncio.run(bounded_map([1], identity, concurrency=0))
