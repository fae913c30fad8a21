"""Clock - tick numbering and per-tick wall time measurement."""

import random
import time
from typing import Callable

from tick.cache import TickCache
from tick.cpu import CpuBucket
from tick.types import TickContext


class Clock:
    """Counts ticks and measures how long the current one has been running.

    ``timer`` returns seconds; :meth:`spent_ms` reports milliseconds, the unit
    the CPU bucket is charged in.
    """

    def __init__(self, tps: int, timer: Callable[[], float] = time.perf_counter) -> None:
        if tps <= 0:
            raise ValueError("tps must be positive")
        self._tps = tps
        self._dt = 1.0 / tps
        self._tick_number = 0
        self._timer = timer
        self._started: float | None = None

    @property
    def tps(self) -> int:
        return self._tps

    @property
    def dt(self) -> float:
        return self._dt

    @property
    def tick_number(self) -> int:
        return self._tick_number

    def advance(self) -> int:
        """Start the next tick and its stopwatch."""
        self._started = self._timer()
        self._tick_number += 1
        return self._tick_number

    def spent_ms(self) -> float:
        """Milliseconds since the last :meth:`advance` (0.0 before the first)."""
        if self._started is None:
            return 0.0
        return (self._timer() - self._started) * 1000.0

    def context(self, stop_fn: Callable[[], None], rng: random.Random,
                cpu: CpuBucket) -> TickContext:
        # Each context gets its own cache; nothing memoized survives the tick.
        return TickContext(self._tick_number, self._dt, self._tick_number * self._dt,
                           stop_fn, rng, cpu, TickCache())

    def reset(self, tick_number: int = 0) -> None:
        self._tick_number = tick_number
        self._started = None
