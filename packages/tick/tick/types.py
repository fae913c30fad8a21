"""Shared type aliases and protocols for the tick engine."""

from __future__ import annotations

import random as _random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

EntityId = int


@dataclass(frozen=True, slots=True)
class TickContext:
    """Per-tick view handed to every system.

    ``cpu`` is the engine's long-lived bucket gauge; ``cache`` is created
    fresh for each tick so memoized scans never outlive the tick.
    """

    tick_number: int
    dt: float
    elapsed: float
    request_stop: Callable[[], None]
    random: _random.Random
    cpu: CpuBucket
    cache: TickCache


class DeadEntityError(KeyError):
    """Raised when operating on an entity that is not alive."""

    def __init__(self, entity_id: int, message: str) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class SnapshotError(Exception):
    """Raised on restore failures (version mismatch, unregistered component type)."""


if TYPE_CHECKING:
    from tick.cache import TickCache
    from tick.cpu import CpuBucket
    from tick.world import World

System = Callable[["World", TickContext], None]
