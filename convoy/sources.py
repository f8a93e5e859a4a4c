"""
Position sources.

The sync engine consumes positions through one contract:
``await source.next_sample()`` returns the next PositionSample, None when
the source is exhausted or closed, and raises PositionSourceError when
the fix is denied or lost (the source stays usable afterwards).

- PushPositionSource adapts callback-driven devices: whatever receives
  fixes calls push() / fail(), the session awaits next_sample().
- SimulatedRouteSource replays a pre-fetched route, one point per tick.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from .config import SIM_TICK_SECONDS
from .errors import PositionSourceError
from .models import PositionSample, TrailPoint


class PositionSource(ABC):
    simulated = False

    @abstractmethod
    async def next_sample(self) -> Optional[PositionSample]: ...

    async def close(self) -> None:
        return None


_CLOSED = object()


class PushPositionSource(PositionSource):
    """Queue fed by a device location callback."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._queue: "asyncio.Queue[Union[PositionSample, PositionSourceError, object]]" = asyncio.Queue()
        self._closed = False

    def push(
        self,
        lat: float,
        lng: float,
        speed: Optional[float] = None,
        accuracy_m: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> None:
        """Deliver a fix from the device."""
        if self._closed:
            return
        ts = timestamp if timestamp is not None else self.clock()
        self._queue.put_nowait(PositionSample(lat=lat, lng=lng, timestamp=ts, speed=speed, accuracy_m=accuracy_m))

    def fail(self, message: str) -> None:
        """Report that the device denied or lost the location."""
        if self._closed:
            return
        self._queue.put_nowait(PositionSourceError(message))

    async def next_sample(self) -> Optional[PositionSample]:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        if isinstance(item, PositionSourceError):
            raise item
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)


class SimulatedRouteSource(PositionSource):
    """
    Replays a route one point per tick.

    The first route point is the starting position; each tick advances
    to the next one. Samples carry no speed or accuracy.
    """

    simulated = True

    def __init__(
        self,
        route: Sequence[TrailPoint],
        tick_seconds: float = SIM_TICK_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not route:
            raise ValueError("Cannot simulate an empty route")
        self.route: List[TrailPoint] = list(route)
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.sleep = sleep
        self.index = 0
        self._closed = False

    @property
    def start(self) -> TrailPoint:
        return self.route[0]

    def position_behind(self, lag: int) -> Optional[TrailPoint]:
        """Route point `lag` steps behind the current one, if the replay got that far."""
        if self.index <= lag:
            return None
        return self.route[self.index - lag]

    async def next_sample(self) -> Optional[PositionSample]:
        if self._closed or self.index + 1 >= len(self.route):
            return None
        await self.sleep(self.tick_seconds)
        if self._closed:
            return None
        self.index += 1
        point = self.route[self.index]
        return PositionSample(lat=point.lat, lng=point.lng, timestamp=self.clock(), simulated=True)

    async def close(self) -> None:
        self._closed = True
