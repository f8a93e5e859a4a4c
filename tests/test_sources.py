import asyncio

import pytest

from conftest import FakeClock
from convoy.errors import PositionSourceError
from convoy.models import TrailPoint
from convoy.sources import PushPositionSource, SimulatedRouteSource


async def _no_sleep(seconds):
    return None


def test_push_source_delivers_in_order():
    async def scenario():
        source = PushPositionSource(clock=FakeClock(7.0))
        source.push(1.0, 2.0, speed=3.0, accuracy_m=4.0)
        source.push(5.0, 6.0, timestamp=9.0)
        first = await source.next_sample()
        second = await source.next_sample()
        await source.close()
        return first, second, await source.next_sample()

    first, second, after_close = asyncio.run(scenario())
    assert (first.lat, first.lng, first.speed, first.accuracy_m, first.timestamp) == (1.0, 2.0, 3.0, 4.0, 7.0)
    assert second.timestamp == 9.0
    assert first.simulated is False
    assert after_close is None


def test_push_source_reports_failures_and_keeps_going():
    async def scenario():
        source = PushPositionSource()
        source.fail("Position unavailable")
        source.push(1.0, 1.0)
        with pytest.raises(PositionSourceError):
            await source.next_sample()
        return await source.next_sample()

    assert asyncio.run(scenario()).lat == 1.0


def test_push_after_close_is_ignored():
    async def scenario():
        source = PushPositionSource()
        await source.close()
        source.push(1.0, 1.0)
        return await source.next_sample(), await source.next_sample()

    assert asyncio.run(scenario()) == (None, None)


def test_simulated_route_replays_points():
    route = [TrailPoint(lat=float(i), lng=0.0) for i in range(4)]
    source = SimulatedRouteSource(route, tick_seconds=1.0, clock=FakeClock(3.0), sleep=_no_sleep)

    async def scenario():
        samples = []
        while True:
            sample = await source.next_sample()
            if sample is None:
                return samples
            samples.append(sample)

    samples = asyncio.run(scenario())
    assert source.start == route[0]
    assert [s.lat for s in samples] == [1.0, 2.0, 3.0]
    assert all(s.simulated and s.accuracy_m is None and s.speed is None for s in samples)
    assert samples[0].timestamp == 3.0


def test_position_behind_lags_the_replay():
    route = [TrailPoint(lat=float(i), lng=0.0) for i in range(20)]
    source = SimulatedRouteSource(route, sleep=_no_sleep)

    async def advance(n):
        for _ in range(n):
            await source.next_sample()

    asyncio.run(advance(15))
    assert source.position_behind(15) is None
    asyncio.run(advance(1))
    assert source.position_behind(15) == route[1]


def test_closed_simulation_stops():
    source = SimulatedRouteSource([TrailPoint(lat=0.0, lng=0.0), TrailPoint(lat=1.0, lng=0.0)], sleep=_no_sleep)
    asyncio.run(source.close())
    assert asyncio.run(source.next_sample()) is None


def test_empty_route_rejected():
    with pytest.raises(ValueError):
        SimulatedRouteSource([])
