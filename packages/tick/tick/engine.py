"""Engine - core loop, CPU accounting, and lifecycle hooks."""

import logging
import os
import random
import time
from typing import Any, Callable

from tick.clock import Clock
from tick.cpu import CpuBucket
from tick.types import SnapshotError, System, TickContext
from tick.world import World

logger = logging.getLogger(__name__)

_SNAPSHOT_VERSION = 2


class Engine:
    """Runs registered systems once per tick.

    Every system call is isolated: an exception raised by one system is
    logged and counted, and the remaining systems still run. Wall time spent
    in the tick (as reported by ``timer``, in seconds) is charged against the
    CPU bucket in milliseconds.
    """

    def __init__(
        self,
        tps: int = 20,
        seed: int | None = None,
        cpu_limit: float = 20.0,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._clock = Clock(tps, timer)
        self._world = World()
        self._cpu = CpuBucket(limit=cpu_limit)
        self._systems: list[System] = []
        self._start_hooks: list[Callable[[World, TickContext], None]] = []
        self._stop_hooks: list[Callable[[World, TickContext], None]] = []
        self._stop_requested: bool = False
        self.failures: int = 0

        if seed is None:
            seed = int.from_bytes(os.urandom(8))
        self._seed = seed
        self._rng = random.Random(seed)

    @property
    def world(self) -> World:
        return self._world

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def cpu(self) -> CpuBucket:
        return self._cpu

    @property
    def seed(self) -> int:
        return self._seed

    def add_system(self, system: System) -> None:
        self._systems.append(system)

    def on_start(self, hook: Callable[[World, TickContext], None]) -> None:
        self._start_hooks.append(hook)

    def on_stop(self, hook: Callable[[World, TickContext], None]) -> None:
        self._stop_hooks.append(hook)

    def _request_stop(self) -> None:
        self._stop_requested = True

    def _context(self) -> TickContext:
        return self._clock.context(self._request_stop, self._rng, self._cpu)

    def _tick(self) -> None:
        self._clock.advance()
        ctx = self._context()
        for system in self._systems:
            try:
                system(self._world, ctx)
            except Exception:
                self.failures += 1
                logger.exception(
                    "tick %d: system %s raised; continuing",
                    ctx.tick_number, getattr(system, "__name__", repr(system)),
                )
            if self._stop_requested:
                break
        self._cpu.charge(self._clock.spent_ms())

    def _run_hooks(self, hooks: list[Callable[[World, TickContext], None]]) -> None:
        ctx = self._context()
        for hook in hooks:
            hook(self._world, ctx)

    def step(self) -> None:
        self._stop_requested = False
        self._tick()

    def run(self, n: int) -> None:
        self._stop_requested = False
        self._run_hooks(self._start_hooks)

        for _ in range(n):
            self._tick()
            if self._stop_requested:
                break

        self._run_hooks(self._stop_hooks)

    def snapshot(self) -> dict[str, Any]:
        return {
            "version": _SNAPSHOT_VERSION,
            "tick_number": self._clock.tick_number,
            "tps": self._clock.tps,
            "seed": self._seed,
            "rng_state": _serialize_rng_state(self._rng.getstate()),
            "cpu_bucket": self._cpu.bucket,
            "world": self._world.snapshot(),
        }

    def restore(self, data: dict[str, Any]) -> None:
        version = data.get("version")
        if version != _SNAPSHOT_VERSION:
            raise SnapshotError(
                f"Unsupported snapshot version {version!r}, expected {_SNAPSHOT_VERSION}"
            )

        snap_tps = data.get("tps")
        if snap_tps != self._clock.tps:
            raise SnapshotError(
                f"TPS mismatch: snapshot has {snap_tps}, engine has {self._clock.tps}"
            )

        self._clock.reset(data["tick_number"])
        self._seed = data["seed"]
        self._rng.setstate(_deserialize_rng_state(data["rng_state"]))
        self._cpu.bucket = data.get("cpu_bucket", self._cpu.ceiling)
        self._world.restore(data["world"])


def _serialize_rng_state(state: tuple[int, tuple[int, ...], float | None]) -> list[Any]:
    """Convert Random.getstate() tuple to a JSON-compatible list."""
    version, internalstate, gauss_next = state
    return [version, list(internalstate), gauss_next]


def _deserialize_rng_state(data: list[Any]) -> tuple[int, tuple[int, ...], float | None]:
    version, internalstate, gauss_next = data
    return (version, tuple(internalstate), gauss_next)
