"""tick - A minimal tick engine with CPU accounting and per-tick caching."""

from tick.cache import TickCache
from tick.clock import Clock
from tick.cpu import CpuBucket
from tick.engine import Engine
from tick.types import DeadEntityError, EntityId, SnapshotError, TickContext
from tick.world import World

__all__ = [
    "Engine",
    "World",
    "Clock",
    "CpuBucket",
    "TickCache",
    "TickContext",
    "EntityId",
    "DeadEntityError",
    "SnapshotError",
]
