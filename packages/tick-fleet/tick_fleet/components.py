"""Host-world components.

Plain mutable dataclasses attached to :class:`tick.World` entities. Field
values stay JSON-friendly (strings, ints, lists) so a world snapshot can be
serialized directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from tick_fleet.types import ENERGY


@dataclass
class Position:
    site: str
    x: int = 25
    y: int = 25


@dataclass
class Body:
    parts: list[str] = field(default_factory=list)


@dataclass
class Store:
    """Single-resource container. ``capacity`` of 0 means the entity cannot hold anything."""

    amount: int = 0
    capacity: int = 0
    resource: str = ENERGY

    @property
    def free(self) -> int:
        return max(0, self.capacity - self.amount)

    @property
    def full(self) -> bool:
        return self.amount >= self.capacity

    @property
    def empty(self) -> bool:
        return self.amount <= 0


@dataclass
class Hits:
    hits: int
    hits_max: int


@dataclass
class Structure:
    kind: str
    owner: str | None = None


@dataclass
class ConstructionSite:
    kind: str
    progress: int = 0
    total: int = 1000
    owner: str | None = None


@dataclass
class Source:
    energy: int = 3000
    capacity: int = 3000
    regen_in: int = 300


@dataclass
class Mineral:
    kind: str


@dataclass
class Dropped:
    amount: int
    resource: str = ENERGY


@dataclass
class Controller:
    level: int = 0
    progress: int = 0
    downgrade: int = 20_000
    owner: str | None = None
    reserved_by: str | None = None
    reservation: int = 0


@dataclass
class Spawner:
    name: str
    spawning: str | None = None
    remaining: int = 0


@dataclass
class Terminal:
    cooldown: int = 0


@dataclass
class Hostile:
    owner: str = "Invader"
    boosted: bool = False


@dataclass
class Agent:
    """A worker body in the world. Its decision record lives in fleet memory."""

    name: str
    owner: str
    ticks_to_live: int = 1500


HOST_COMPONENTS = (
    Position, Body, Store, Hits, Structure, ConstructionSite, Source,
    Mineral, Dropped, Controller, Spawner, Terminal, Hostile, Agent,
)
