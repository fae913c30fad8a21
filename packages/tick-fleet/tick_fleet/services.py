"""Site map and scoring services consumed by the planner and the colony.

Both are protocols; the fleet ships a default implementation of each that
reads the host directly. :class:`GridSiteMap` keeps its answers across ticks
until told to forget them; the fleet clears it on its memory cleanup cadence.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tick_fleet.components import Controller, Mineral, Position, Source, Structure
from tick_fleet.types import StructureKind

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.environment import Environment

SITE_SIZE = 50
GROWTH_RANGE = 3
DEFAULT_DISTANCE = 25

MINERAL_VALUE = {"X": 30, "Z": 20, "K": 20, "U": 15, "L": 15, "H": 5, "O": 5}

_WALKABLE = frozenset({
    StructureKind.ROAD.value, StructureKind.CONTAINER.value, StructureKind.RAMPART.value,
})
_DROP_OFF = (StructureKind.STORAGE, StructureKind.SPAWN)


@dataclass(frozen=True)
class NodeInfo:
    """A resource node and how many workers can gather from it at once.

    Attributes:
        node: Entity id of the node.
        capacity: Free tiles adjacent to the node.
        distance: Tiles between the node and the site's drop-off point.
    """

    node: EntityId
    capacity: int
    distance: int


@runtime_checkable
class SiteMap(Protocol):
    """Layout facts about a site."""

    def nodes(self, site: str) -> list[NodeInfo]:
        """Resource nodes of *site* with their parallel worker capacity."""
        ...

    def growth_capacity(self, site: str) -> int:
        """Tiles from which workers can reach the growth structure."""
        ...


@runtime_checkable
class ScoringService(Protocol):
    """Rates an observed site's suitability for expansion."""

    def score(self, site: str) -> float:
        ...


class GridSiteMap:
    """Derives slots by counting free tiles around nodes and the controller."""

    def __init__(self, env: Environment) -> None:
        self._env = env
        self._nodes: dict[str, list[NodeInfo]] = {}
        self._growth: dict[str, int] = {}

    def forget(self, site: str | None = None) -> None:
        if site is None:
            self._nodes.clear()
            self._growth.clear()
        else:
            self._nodes.pop(site, None)
            self._growth.pop(site, None)

    def _blocked(self, site: str) -> set[tuple[int, int]]:
        blocked: set[tuple[int, int]] = set()
        for ctype in (Source, Mineral, Controller):
            for eid, _ in self._env.find(site, ctype):
                pos = self._env.position(eid)
                if pos is not None:
                    blocked.add((pos.x, pos.y))
        for eid, (structure,) in self._env.find(site, Structure):
            if structure.kind not in _WALKABLE:
                pos = self._env.position(eid)
                if pos is not None:
                    blocked.add((pos.x, pos.y))
        return blocked

    @staticmethod
    def _free_around(pos: Position, radius: int, blocked: set[tuple[int, int]]) -> int:
        free = 0
        for dx in range(-radius, radius + 1):
            for dy in range(-radius, radius + 1):
                x, y = pos.x + dx, pos.y + dy
                if (dx or dy) and 0 < x < SITE_SIZE - 1 and 0 < y < SITE_SIZE - 1 \
                        and (x, y) not in blocked:
                    free += 1
        return free

    def _drop_off(self, site: str) -> Position | None:
        for kind in _DROP_OFF:
            found = self._env.structures(site, kind, mine=True)
            if found:
                return self._env.position(found[0][0])
        return None

    def nodes(self, site: str) -> list[NodeInfo]:
        cached = self._nodes.get(site)
        if cached is not None:
            return cached
        blocked = self._blocked(site)
        drop = self._drop_off(site)
        result = []
        for eid in self._env.sources(site):
            pos = self._env.position(eid)
            if pos is None:
                continue
            distance = (max(abs(pos.x - drop.x), abs(pos.y - drop.y))
                        if drop is not None else DEFAULT_DISTANCE)
            result.append(NodeInfo(eid, self._free_around(pos, 1, blocked), distance))
        self._nodes[site] = result
        return result

    def growth_capacity(self, site: str) -> int:
        cached = self._growth.get(site)
        if cached is not None:
            return cached
        found = self._env.controller(site)
        pos = self._env.position(found[0]) if found is not None else None
        capacity = 0
        if pos is not None:
            capacity = self._free_around(pos, GROWTH_RANGE, self._blocked(site))
        self._growth[site] = capacity
        return capacity


class SourceScorer:
    """Scores a site by its resource nodes and mineral."""

    def __init__(self, env: Environment) -> None:
        self._env = env

    def score(self, site: str) -> float:
        value = len(self._env.sources(site)) * 100
        for kind in self._env.minerals(site):
            value += MINERAL_VALUE.get(kind, 0)
        return float(value)
