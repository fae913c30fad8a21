"""SiteScheduler - one site's turn within a tick.

The turn runs in a fixed order:

1. refresh the site profile
2. derive the emergency flag, notifying at most once per interval
3. registry maintenance, then task sourcing
4. production planning, feeding the production queue
5. worker dispatch

Task creation therefore always precedes assignment and execution within
the site. The production queue itself is processed once per tick by the
fleet, after every site has had its turn.

When the CPU bucket runs dry the fleet calls :meth:`SiteScheduler.run_reduced`
instead, which only refreshes the profile and dispatches one batch of
workers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from tick_fleet import events
from tick_fleet.components import Hits, Source, Store, Structure
from tick_fleet.config import FleetConfig
from tick_fleet.profile import build_profile, needs_repair
from tick_fleet.results import StepFailed, StepResult, guarded
from tick_fleet.types import StructureKind, TaskType

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.behaviors import Behaviors
    from tick_fleet.environment import Environment
    from tick_fleet.events import EventLog
    from tick_fleet.memory import FleetMemory, SiteRecord
    from tick_fleet.planner import ProductionPlanner
    from tick_fleet.profile import SiteProfile
    from tick_fleet.spawning import ProductionQueue, ProductionRequest
    from tick_fleet.tasks import TaskRegistry

logger = logging.getLogger(__name__)

# Task priorities.
SPAWN_FILL = 100
ATTACK = 95
WALL_CRITICAL = 90
HEAL = 85
CLAIM = 80
REMOTE_WITHDRAW = 80
REMOTE_WITHDRAW_URGENT = 120
HARVEST = 70
TOWER_FILL = 60
RESERVE = 60
BUILD = 50
REPAIR = 40
UPGRADE = 30
WITHDRAW = 20
PICKUP = 10

RESERVE_BELOW = 2000
RESERVE_GOAL = 4000
URGENT_HOME_STORAGE = 2000

_WALLS = (StructureKind.WALL.value, StructureKind.RAMPART.value)
_STOCK = (StructureKind.CONTAINER.value, StructureKind.STORAGE.value)


def in_batch(name: str, tick: int, batches: int) -> bool:
    """Whether worker *name* runs this tick when the fleet runs in batches."""
    digits = "".join(ch for ch in name if ch.isdigit())
    return int(digits or 0) % batches == tick % batches


@dataclass
class SiteRun:
    """What one site's turn produced."""

    profile: SiteProfile
    created: list[str] = field(default_factory=list)
    requests: list[ProductionRequest] = field(default_factory=list)
    results: list[StepResult] = field(default_factory=list)

    def summary(self) -> str:
        failed = sum(1 for r in self.results if isinstance(r, StepFailed))
        return (f"{len(self.created)} tasks, {len(self.requests)} requests, "
                f"{len(self.results)} workers ({failed} failed)")


class SiteScheduler:
    def __init__(self, env: Environment, memory: FleetMemory, registry: TaskRegistry,
                 planner: ProductionPlanner, queue: ProductionQueue,
                 behaviors: Behaviors, config: FleetConfig | None = None,
                 event_log: EventLog | None = None) -> None:
        self._env = env
        self._memory = memory
        self._registry = registry
        self._planner = planner
        self._queue = queue
        self._behaviors = behaviors
        self._config = config or FleetConfig()
        self._events = event_log

    # -- Steps --

    def refresh(self, site: str, remotes: Sequence[str] = ()) -> SiteProfile:
        profile = build_profile(self._env, self._memory, site, remotes, self._config.tasks)
        # Requests count toward the site the worker will belong to, which is
        # not always the site producing it.
        for request in self._queue.pending():
            if request.home == site:
                profile.add_queued(request.role.value, request.target_site)
        return profile

    def update_emergency(self, profile: SiteProfile, record: SiteRecord, tick: int) -> bool:
        """Raise, continue or clear the site's emergency flag.

        Raised by a hostile count at the threshold, any boosted hostile or a
        rampart below critical hits. Once raised it holds while any hostile
        remains.
        """
        cfg = self._config.defense
        raised = (
            profile.hostiles >= cfg.hostile_threshold
            or profile.boosted > 0
            or (profile.weakest_rampart is not None
                and profile.weakest_rampart < cfg.rampart_critical_hits)
        )
        if record.emergency and profile.hostiles > 0:
            raised = True
        if raised and (record.last_notified < 0
                       or tick - record.last_notified >= cfg.notify_interval):
            record.last_notified = tick
            logger.warning(
                "%s: emergency (%d hostiles, %d boosted, weakest rampart %s)",
                profile.site, profile.hostiles, profile.boosted, profile.weakest_rampart,
            )
            if self._events is not None:
                self._events.emit(tick, events.EMERGENCY, site=profile.site,
                                  hostiles=profile.hostiles, boosted=profile.boosted)
        elif record.emergency and not raised:
            logger.info("%s: emergency over", profile.site)
        record.emergency = raised
        profile.emergency = raised
        return raised

    def _ensure(self, type: TaskType, target: EntityId, priority: int, site: str,
                created: list[str], **extra: Any) -> None:
        if self._registry.existing(target, type) is None:
            created.append(self._registry.create(type, target, priority, site, **extra))

    def source_tasks(self, profile: SiteProfile, tick: int,
                     remotes: Sequence[str] = (),
                     targets: Sequence[str] = ()) -> list[str]:
        """Create tasks for every unmet opportunity in the site.

        Idempotent: an opportunity that already has a live task of the same
        type is skipped. Remote sites are scanned on a slower cadence.
        """
        env = self._env
        cfg = self._config.tasks
        site = profile.site
        created: list[str] = []

        for eid, (structure, store) in env.find(site, Structure, Store):
            if structure.owner != env.username:
                continue
            if structure.kind in (StructureKind.SPAWN.value, StructureKind.EXTENSION.value):
                if store.free > 0:
                    self._ensure(TaskType.TRANSFER, eid, SPAWN_FILL, site, created)
            elif structure.kind == StructureKind.TOWER.value:
                if store.free > 0:
                    self._ensure(TaskType.TRANSFER, eid, TOWER_FILL, site, created)
            elif structure.kind in _STOCK and not store.empty:
                self._ensure(TaskType.WITHDRAW, eid, WITHDRAW, site, created)

        for eid, _ in env.construction_sites(site):
            self._ensure(TaskType.BUILD, eid, BUILD, site, created)

        for eid, (structure, hits) in env.find(site, Structure, Hits):
            if structure.owner not in (None, env.username):
                continue
            if needs_repair(structure.kind, hits, cfg):
                critical = structure.kind in _WALLS and hits.hits < cfg.wall_critical_hits
                self._ensure(TaskType.REPAIR, eid, WALL_CRITICAL if critical else REPAIR,
                             site, created)

        for eid, drop in env.dropped(site):
            if drop.amount > cfg.min_pickup:
                self._ensure(TaskType.PICKUP, eid, PICKUP, site, created)

        for eid, (source,) in env.find(site, Source):
            if source.energy > 0:
                self._ensure(TaskType.HARVEST, eid, HARVEST, site, created)

        found = env.controller(site)
        if found is not None and found[1].owner == env.username:
            self._ensure(TaskType.UPGRADE, found[0], UPGRADE, site, created)

        for eid, _ in env.hostiles(site):
            self._ensure(TaskType.ATTACK, eid, ATTACK, site, created)
            self._ensure(TaskType.RANGED_ATTACK, eid, ATTACK, site, created)

        for eid, _ in env.workers_in(site):
            hits = env.get(eid, Hits)
            if hits is not None and hits.hits < hits.hits_max:
                self._ensure(TaskType.HEAL, eid, HEAL, site, created)

        if tick % cfg.remote_interval == 0:
            for remote in remotes:
                self._source_remote(profile, remote, created)
            for target in targets:
                self._source_claim(target, created)
        return created

    def _source_remote(self, profile: SiteProfile, remote: str, created: list[str]) -> None:
        env = self._env
        if not env.visible(remote):
            return
        urgent = profile.stored < URGENT_HOME_STORAGE
        for eid, (structure, store) in env.find(remote, Structure, Store):
            if structure.kind == StructureKind.CONTAINER.value and not store.empty:
                self._ensure(TaskType.WITHDRAW, eid,
                             REMOTE_WITHDRAW_URGENT if urgent else REMOTE_WITHDRAW,
                             remote, created)
        found = env.controller(remote)
        if found is not None and found[1].owner is None \
                and found[1].reservation < RESERVE_BELOW:
            self._ensure(TaskType.RESERVE, found[0], RESERVE, remote, created,
                         amount=RESERVE_GOAL)
        for eid in env.sources(remote):
            self._ensure(TaskType.HARVEST, eid, HARVEST, remote, created)

    def _source_claim(self, target: str, created: list[str]) -> None:
        if not self._env.visible(target):
            return
        found = self._env.controller(target)
        if found is not None and found[1].owner is None:
            self._ensure(TaskType.CLAIM, found[0], CLAIM, target, created)

    def plan(self, profile: SiteProfile, tick: int,
             remotes: Sequence[str] = ()) -> list[ProductionRequest]:
        requests = self._planner.plan(profile, tick, remotes)
        for request in requests:
            self._queue.enqueue(request)
        return requests

    def dispatch(self, names: Sequence[str]) -> list[StepResult]:
        """Run each worker's behavior, resetting the ones that raise."""
        results: list[StepResult] = []
        for name in names:
            result = guarded(name, lambda n=name: self._behaviors.run(n))
            if isinstance(result, StepFailed):
                logger.error("worker %s failed; resetting", name, exc_info=result.error)
                self._behaviors.reset(name)
                if self._events is not None:
                    self._events.emit(self._env.tick, events.WORKER_RESET, name=name,
                                      error=type(result.error).__name__)
            results.append(result)
        return results

    # -- Turns --

    def run(self, site: str, tick: int, remotes: Sequence[str] = (),
            targets: Sequence[str] = ()) -> SiteRun:
        profile = self.refresh(site, remotes)
        record = self._memory.site(site)
        self.update_emergency(profile, record, tick)
        self._registry.cleanup(site)
        run = SiteRun(profile)
        run.created = self.source_tasks(profile, tick, remotes, targets)
        run.requests = self.plan(profile, tick, remotes)
        run.results = self.dispatch(profile.workers)
        profile.store(record)
        return run

    def run_reduced(self, site: str, tick: int) -> SiteRun:
        """Refresh and dispatch this tick's batch of workers only."""
        profile = self.refresh(site)
        batches = self._config.cpu.batches
        run = SiteRun(profile)
        run.results = self.dispatch(
            [n for n in profile.workers if in_batch(n, tick, batches)]
        )
        profile.emergency = self._memory.site(site).emergency
        profile.store(self._memory.site(site))
        return run
