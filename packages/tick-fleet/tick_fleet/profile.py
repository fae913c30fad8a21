"""Per-tick read model of a site.

Profiles are rebuilt from the host and the worker table at the start of
every site's turn and thrown away at the end of the tick. The few numbers
that must outlive the tick are copied into the site's memory record.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from tick_fleet.components import Hits, Structure
from tick_fleet.config import TaskConfig
from tick_fleet.types import Role, StructureKind

if TYPE_CHECKING:
    from tick_fleet.environment import Environment
    from tick_fleet.memory import FleetMemory, SiteRecord

_WALLS = (StructureKind.WALL.value, StructureKind.RAMPART.value)


@dataclass
class SiteProfile:
    """Counts and totals the planner and scheduler decide from.

    Attributes:
        site: Site name.
        level: Territory level (0 when not owned).
        downgrade: Ticks until the site's territory level drops.
        role_counts: Live workers produced for this site, by role value.
        queued: Production requests already waiting, by role value.
        energy_available: Energy in spawns and extensions.
        energy_capacity: Capacity of spawns and extensions.
        stored: Energy in storage and terminal.
        sources: Number of resource nodes.
        hostiles: Hostile units present.
        boosted: Boosted hostile units present.
        construction: Open construction sites.
        damaged: Structures below the repair threshold.
        weakest_rampart: Lowest rampart hit count, or None without ramparts.
        workers: Names of workers produced for this site, sorted.
        remote_counts: For each remote site this site looks after, live
            workers targeting it by role value.
        emergency: Set by the scheduler once the emergency flag is derived.
    """

    site: str
    level: int = 0
    downgrade: int = 0
    role_counts: Counter[str] = field(default_factory=Counter)
    queued: Counter[str] = field(default_factory=Counter)
    energy_available: int = 0
    energy_capacity: int = 0
    stored: int = 0
    sources: int = 0
    hostiles: int = 0
    boosted: int = 0
    construction: int = 0
    damaged: int = 0
    weakest_rampart: int | None = None
    workers: list[str] = field(default_factory=list)
    remote_counts: dict[str, Counter[str]] = field(default_factory=dict)
    emergency: bool = False

    def count(self, role: Role, include_queued: bool = True) -> int:
        n = self.role_counts[role.value]
        if include_queued:
            n += self.queued[role.value]
        return n

    def remote(self, remote_site: str, role: Role) -> int:
        counts = self.remote_counts.get(remote_site)
        return counts[role.value] if counts else 0

    def add_queued(self, role: str, target_site: str | None = None) -> None:
        self.queued[role] += 1
        if target_site is not None and target_site in self.remote_counts:
            self.remote_counts[target_site][role] += 1

    def store(self, record: SiteRecord) -> None:
        """Copy the persisted subset into *record*."""
        record.level = self.level
        record.role_counts = dict(self.role_counts)
        record.energy_available = self.energy_available
        record.energy_capacity = self.energy_capacity
        record.stored = self.stored
        record.construction = self.construction
        record.damaged = self.damaged
        record.emergency = self.emergency


def build_profile(env: Environment, memory: FleetMemory, site: str,
                  remotes: Iterable[str] = (),
                  config: TaskConfig | None = None) -> SiteProfile:
    """Scan *site* and the worker table into a fresh :class:`SiteProfile`."""
    config = config or TaskConfig()
    profile = SiteProfile(site=site)
    found = env.controller(site)
    if found is not None and found[1].owner == env.username:
        profile.level = found[1].level
        profile.downgrade = found[1].downgrade
    profile.energy_available = env.energy_available(site)
    profile.energy_capacity = env.energy_capacity(site)
    profile.stored = env.stored_energy(site)
    profile.sources = len(env.sources(site))

    hostiles = env.hostiles(site)
    profile.hostiles = len(hostiles)
    profile.boosted = sum(1 for _, h in hostiles if h.boosted)
    profile.construction = len(env.construction_sites(site))

    for _, (structure, hits) in env.find(site, Structure, Hits):
        if structure.owner not in (None, env.username):
            continue
        if structure.kind == StructureKind.RAMPART.value:
            if profile.weakest_rampart is None or hits.hits < profile.weakest_rampart:
                profile.weakest_rampart = hits.hits
        if needs_repair(structure.kind, hits, config):
            profile.damaged += 1

    for remote in remotes:
        profile.remote_counts[remote] = Counter()
    for name in env.worker_names():
        record = memory.worker(name)
        if record is None:
            continue
        if record.home == site:
            profile.role_counts[record.role] += 1
            profile.workers.append(name)
        if record.target_site in profile.remote_counts:
            profile.remote_counts[record.target_site][record.role] += 1
    return profile


def needs_repair(kind: str, hits: Hits, config: TaskConfig) -> bool:
    """Damage threshold shared by the profile's backlog count and repair tasks."""
    if kind in _WALLS and hits.hits < config.wall_critical_hits:
        return True
    return (hits.hits < hits.hits_max * config.repair_ratio
            and hits.hits < config.repair_ceiling)
