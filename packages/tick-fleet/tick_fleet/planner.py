"""ProductionPlanner - turns a site profile into production requests.

The planner computes a desired roster per role and requests the deficit
against live plus already-queued workers. Emergencies are handled first
and carry priorities above the normal range, so the queue serves them
before anything else:

* no gatherers left: one gatherer per resource node (200)
* territory about to be lost: growers up to the emergency minimum (190)
* no growers at an owned site (180)
* hostiles present and no defender (170)

Normal priorities stay within 10..100.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from typing import TYPE_CHECKING, Iterable, Sequence

from tick_fleet.body import (
    BodyContext, build_body, count_parts, defender_body, move_speed, urgent_manifest,
)
from tick_fleet.config import DefenseConfig, PlannerConfig
from tick_fleet.environment import CARRY_CAPACITY, HARVEST_POWER, SOURCE_REGEN
from tick_fleet.spawning import ProductionRequest
from tick_fleet.types import Part, Role

if TYPE_CHECKING:
    from tick_fleet.profile import SiteProfile
    from tick_fleet.services import SiteMap

logger = logging.getLogger(__name__)

ZERO_GATHERER_PRIORITY = 200
TERRITORY_LOSS_PRIORITY = 190
ZERO_GROWER_PRIORITY = 180
DEFENDER_EMERGENCY_PRIORITY = 170
RELIEF_PRIORITY = 90

PRIORITY = {
    Role.HARVESTER: 100,
    Role.UPGRADER: 99,
    Role.BUILDER: 98,
    Role.HAULER: 97,
    Role.DEFENDER: 95,
    Role.REPAIRER: 70,
    Role.REMOTE_HARVESTER: 50,
    Role.RESERVER: 40,
    Role.SCOUT: 10,
}
REMOTE_HAULER_PRIORITY = 45

# Order in which normal deficits are requested.
_ROSTER = (Role.HARVESTER, Role.UPGRADER, Role.BUILDER, Role.HAULER,
           Role.DEFENDER, Role.REPAIRER)

NODE_OUTPUT = 3000 // SOURCE_REGEN
SATURATION_WORK = math.ceil(NODE_OUTPUT / HARVEST_POWER)


class ProductionPlanner:
    def __init__(self, site_map: SiteMap, config: PlannerConfig | None = None,
                 defense: DefenseConfig | None = None) -> None:
        self._map = site_map
        self._config = config or PlannerConfig()
        self._defense = defense or DefenseConfig()

    @property
    def config(self) -> PlannerConfig:
        return self._config

    # -- Budgets and bodies --

    def _recovering(self, profile: SiteProfile) -> bool:
        return profile.count(Role.HARVESTER, include_queued=False) == 0

    def budget(self, profile: SiteProfile) -> int:
        """Energy a body may cost: what is on hand while recovering, else full capacity."""
        if self._recovering(profile):
            return profile.energy_available
        return profile.energy_capacity

    def urgent(self, profile: SiteProfile) -> bool:
        """Zero gatherers and critically low energy: minimal manifests only."""
        return (self._recovering(profile)
                and profile.energy_available < self._config.critical_energy)

    def _context(self, profile: SiteProfile) -> BodyContext:
        return BodyContext(
            level=max(1, profile.level),
            storage=profile.stored,
            construction_sites=profile.construction,
            downgrade=profile.downgrade if profile.level else 100_000,
            urgent=self.urgent(profile),
        )

    def body(self, role: Role, profile: SiteProfile) -> list[Part]:
        ctx = self._context(profile)
        if ctx.urgent:
            urgent = urgent_manifest(role)
            if urgent is not None:
                # Waits in the queue for energy rather than shrinking further.
                return urgent
        return build_body(role, self.budget(profile), ctx)

    # -- Roster --

    def gatherers(self, profile: SiteProfile) -> int:
        nodes = self._map.nodes(profile.site)
        if not nodes:
            return 0
        work = count_parts(self.body(Role.HARVESTER, profile), Part.WORK) or 1
        per_node = math.ceil(SATURATION_WORK / work)
        total = sum(min(n.capacity, per_node) for n in nodes)
        cap = max(len(nodes), self._config.baseline(self._config.harvesters, profile.level))
        return min(total, cap)

    def haulers(self, profile: SiteProfile) -> int:
        cfg = self._config
        if profile.level < cfg.hauler_level:
            return 0
        if profile.level >= cfg.hauler_storage_override_level:
            return max(1, min(cfg.max_haulers, profile.stored // cfg.energy_per_hauler + 1))
        body = self.body(Role.HAULER, profile)
        carry = count_parts(body, Part.CARRY) * CARRY_CAPACITY
        speed = move_speed(body)
        if carry == 0 or speed == 0:
            return 0
        # Output per tick times round trip, over one hauler's load times its speed.
        demand = sum(NODE_OUTPUT * 2 * n.distance for n in self._map.nodes(profile.site))
        return min(cfg.max_haulers, math.ceil(demand / (carry * speed)))

    def upgraders(self, profile: SiteProfile) -> int:
        cfg = self._config
        if profile.level == 0:
            return 0
        wanted = cfg.baseline(cfg.upgraders, profile.level)
        if profile.level < 8 and profile.stored > cfg.upgrader_reserve:
            wanted += (profile.stored - cfg.upgrader_reserve) // cfg.energy_per_upgrader
        slots = self._map.growth_capacity(profile.site)
        if slots:
            wanted = min(wanted, slots)
        return wanted

    def builders(self, profile: SiteProfile) -> int:
        cfg = self._config
        if profile.construction == 0:
            return 1 if 0 < profile.level <= 2 else 0
        by_backlog = math.ceil(profile.construction / cfg.sites_per_builder)
        return min(by_backlog, cfg.max_builders,
                   max(1, cfg.baseline(cfg.builders, profile.level)))

    def repairers(self, profile: SiteProfile) -> int:
        cfg = self._config
        return min(cfg.max_repairers, math.ceil(profile.damaged / cfg.damaged_per_repairer))

    def defenders(self, profile: SiteProfile) -> int:
        if profile.hostiles == 0:
            return 0
        return self._defense.defender_min if profile.boosted else 1

    def desired(self, profile: SiteProfile) -> dict[Role, int]:
        return {
            Role.HARVESTER: self.gatherers(profile),
            Role.UPGRADER: self.upgraders(profile),
            Role.BUILDER: self.builders(profile),
            Role.HAULER: self.haulers(profile),
            Role.DEFENDER: self.defenders(profile),
            Role.REPAIRER: self.repairers(profile),
        }

    # -- Planning --

    def plan(self, profile: SiteProfile, tick: int,
             remotes: Sequence[str] = ()) -> list[ProductionRequest]:
        """Requests for *profile*'s deficits, highest priority first."""
        have: Counter[Role] = Counter({r: profile.count(r) for r in Role})
        desired = self.desired(profile)
        requests: list[ProductionRequest] = []

        def request(role: Role, priority: int, body: list[Part] | None = None,
                    **memory: str) -> bool:
            parts = body if body is not None else self.body(role, profile)
            if not parts:
                logger.debug("%s: no affordable %s body", profile.site, role.value)
                return False
            requests.append(ProductionRequest(
                role=role, body=parts, priority=priority, site=profile.site,
                memory={"home": profile.site, **memory},
            ))
            have[role] += 1
            return True

        self._emergencies(profile, desired, have, request)

        for role in _ROSTER:
            for _ in range(desired[role] - have[role]):
                if not request(role, PRIORITY[role]):
                    break

        if profile.level >= self._config.remote_level and profile.hostiles == 0:
            for remote in remotes:
                self._remote(profile, remote, request)

        if (profile.level >= 2 and tick % self._config.scout_interval == 0
                and have[Role.SCOUT] == 0):
            request(Role.SCOUT, PRIORITY[Role.SCOUT])

        requests.sort(key=lambda r: -r.priority)
        if requests:
            logger.debug(
                "%s: planned %s", profile.site,
                ", ".join(f"{r.role.value}@{r.priority}" for r in requests),
            )
        return requests

    def _emergencies(self, profile, desired, have, request) -> None:
        cfg = self._config
        if self._recovering(profile):
            nodes = len(self._map.nodes(profile.site)) or 1
            for _ in range(min(nodes, desired[Role.HARVESTER]) - have[Role.HARVESTER]):
                if not request(Role.HARVESTER, ZERO_GATHERER_PRIORITY):
                    break
        if profile.level >= 1 and profile.downgrade < cfg.downgrade_emergency:
            for _ in range(cfg.emergency_upgraders - have[Role.UPGRADER]):
                if not request(Role.UPGRADER, TERRITORY_LOSS_PRIORITY):
                    break
            desired[Role.UPGRADER] = max(desired[Role.UPGRADER], cfg.emergency_upgraders)
        if profile.level >= 1 and have[Role.UPGRADER] == 0:
            request(Role.UPGRADER, ZERO_GROWER_PRIORITY)
        if profile.hostiles and have[Role.DEFENDER] == 0:
            energy = max(profile.energy_available, min(profile.energy_capacity,
                                                       cfg.critical_energy))
            request(Role.DEFENDER, DEFENDER_EMERGENCY_PRIORITY, defender_body(energy))

    def _remote(self, profile: SiteProfile, remote: str, request) -> None:
        cfg = self._config
        if profile.remote(remote, Role.RESERVER) == 0:
            request(Role.RESERVER, PRIORITY[Role.RESERVER], target_site=remote)
        harvesters = profile.remote(remote, Role.REMOTE_HARVESTER)
        for _ in range(cfg.remote_harvesters - harvesters):
            if request(Role.REMOTE_HARVESTER, PRIORITY[Role.REMOTE_HARVESTER],
                       target_site=remote):
                harvesters += 1
        for _ in range(harvesters - profile.remote(remote, Role.HAULER)):
            if not request(Role.HAULER, REMOTE_HAULER_PRIORITY, target_site=remote):
                break

    # -- Cross-site relief --

    def relief(self, needy: SiteProfile, donors: Iterable[SiteProfile],
               pending: Iterable[ProductionRequest] = ()) -> ProductionRequest | None:
        """A hauler from the richest donor for a site that has lost its gatherers.

        Nothing is requested while the needy site still has energy to
        rebuild on its own, already has a hauler, or a relief request for
        it is already waiting somewhere.
        """
        cfg = self._config
        if not self._recovering(needy) or needy.count(Role.HAULER) > 0:
            return None
        if needy.energy_available >= cfg.critical_energy:
            return None
        for req in pending:
            if req.role is Role.HAULER and req.home == needy.site:
                return None
        candidates = [d for d in donors
                      if d.site != needy.site and d.stored > cfg.donor_storage]
        if not candidates:
            return None
        donor = max(candidates, key=lambda d: (d.stored, d.site))
        body = build_body(Role.HAULER, donor.energy_capacity,
                          BodyContext(level=max(1, donor.level), storage=donor.stored))
        if not body:
            return None
        logger.info("%s: requesting relief hauler from %s", needy.site, donor.site)
        return ProductionRequest(
            role=Role.HAULER, body=body, priority=RELIEF_PRIORITY, site=donor.site,
            memory={"home": needy.site},
        )
