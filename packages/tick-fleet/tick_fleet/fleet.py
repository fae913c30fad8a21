"""Fleet - the per-tick entry point.

A :class:`FleetContext` is built from the persisted store at the start of
every tick and written back at its end; every component of the tick
receives it (or the parts of it it needs) explicitly. The long-lived
:class:`Fleet` only holds what legitimately outlives a tick: the host, the
persisted store, configuration, the layout cache and the event log.

Order within a tick:

1. load and migrate persisted memory
2. colony coordination
3. each owned site's turn (profile, emergency, tasks, planning, dispatch)
4. workers whose home is no longer owned
5. cross-site relief, then production queue processing
6. task cleanup, memory cleanup and statistics on their cadences
7. persist

Below the critical CPU bucket only reduced site turns run, over one batch
of workers; planning, colony coordination and production are skipped.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, MutableMapping

from tick_fleet import events
from tick_fleet.behaviors import Behaviors
from tick_fleet.colony import ColonyCoordinator, ColonyState
from tick_fleet.config import FleetConfig
from tick_fleet.events import EventLog
from tick_fleet.memory import FleetMemory, SiteRecord
from tick_fleet.planner import ProductionPlanner
from tick_fleet.results import StepFailed, TickReport, guarded
from tick_fleet.services import GridSiteMap, SourceScorer
from tick_fleet.site import SiteScheduler, in_batch
from tick_fleet.spawning import ProductionQueue
from tick_fleet.tasks import TaskRegistry

if TYPE_CHECKING:
    from tick import TickContext, World
    from tick_fleet.environment import Environment
    from tick_fleet.profile import SiteProfile
    from tick_fleet.services import ScoringService, SiteMap

logger = logging.getLogger(__name__)


@dataclass
class FleetContext:
    """Everything one tick works with, wired together."""

    env: Environment
    config: FleetConfig
    memory: FleetMemory
    registry: TaskRegistry
    queue: ProductionQueue
    planner: ProductionPlanner
    behaviors: Behaviors
    scheduler: SiteScheduler
    colony: ColonyCoordinator
    events: EventLog
    migrated: bool = False

    @classmethod
    def begin(cls, env: Environment, store: MutableMapping[str, Any],
              config: FleetConfig, site_map: SiteMap, scorer: ScoringService,
              event_log: EventLog,
              task_stats: Counter[str] | None = None) -> FleetContext:
        stored_version = store.get("version") if store else None
        memory = FleetMemory.from_dict(dict(store), config.memory_version)
        registry = TaskRegistry(env, config.tasks, memory.workers, task_stats)
        registry.load(memory.tasks)
        queue = ProductionQueue(env, memory, config.spawn, event_log)
        queue.load(memory.queues)
        planner = ProductionPlanner(site_map, config.planner, config.defense)
        behaviors = Behaviors(env, registry, memory)
        scheduler = SiteScheduler(env, memory, registry, planner, queue, behaviors,
                                  config, event_log)
        colony = ColonyCoordinator(env, queue, scorer, memory.workers, config.colony,
                                   ColonyState.from_dict(memory.colony), event_log)
        return cls(
            env=env, config=config, memory=memory, registry=registry, queue=queue,
            planner=planner, behaviors=behaviors, scheduler=scheduler,
            colony=colony, events=event_log,
            migrated=stored_version is not None and stored_version != config.memory_version,
        )

    def persist(self, store: MutableMapping[str, Any]) -> None:
        self.memory.tasks = self.registry.save()
        self.memory.queues = self.queue.save()
        self.memory.colony = self.colony.state.to_dict()
        store.clear()
        store.update(self.memory.to_dict())


class Fleet:
    """Long-lived owner of the fleet's persisted store and services."""

    def __init__(self, env: Environment, store: MutableMapping[str, Any] | None = None,
                 config: FleetConfig | None = None, site_map: SiteMap | None = None,
                 scorer: ScoringService | None = None,
                 event_log: EventLog | None = None) -> None:
        self.env = env
        self.store: MutableMapping[str, Any] = store if store is not None else {}
        self.config = config or FleetConfig()
        self.site_map = site_map or GridSiteMap(env)
        self.scorer = scorer or SourceScorer(env)
        self.events = event_log or EventLog()
        self.task_stats: Counter[str] = Counter()
        self.last_report: TickReport | None = None
        self.last_context: FleetContext | None = None

    def open(self) -> FleetContext:
        """Build a context from the store without running a tick."""
        return FleetContext.begin(self.env, self.store, self.config, self.site_map,
                                  self.scorer, self.events, self.task_stats)

    def tick(self, ctx: TickContext) -> TickReport:
        env = self.env
        env.begin_tick(ctx)
        tick = ctx.tick_number
        cfg = self.config
        fc = self.open()
        if fc.migrated:
            self.events.emit(tick, events.MIGRATED, version=cfg.memory_version)
        report = TickReport(tick, emergency_mode=ctx.cpu.below(cfg.cpu.critical_bucket))
        if report.emergency_mode:
            logger.warning("tick %d: CPU bucket %.0f below %d, running reduced",
                           tick, ctx.cpu.bucket, cfg.cpu.critical_bucket)

        targets: list[str] = []
        if not report.emergency_mode:
            result = report.add(guarded("colony", lambda: self._run_colony(fc, tick)))
            if isinstance(result, StepFailed):
                logger.error("colony coordination failed", exc_info=result.error)
            targets = fc.colony.state.target_names()

        profiles = self._run_sites(fc, tick, targets, report)
        self._run_orphans(fc, tick, profiles, report)

        if not report.emergency_mode:
            self._relieve(fc, profiles)
            fc.queue.process_tick(ctx.random)

        if tick % cfg.tasks.cleanup_interval == 0:
            fc.registry.cleanup()
        if tick % cfg.memory_cleanup_interval == 0:
            self._cleanup_memory(fc, tick)
        if tick % cfg.stats_interval == 0:
            logger.info("tick %d stats: %s", tick, stats(fc))

        fc.persist(self.store)
        self.last_context = fc
        self.last_report = report
        if report.failures:
            logger.warning("tick %d: %d step(s) failed", tick, len(report.failures))
        return report

    # -- Steps --

    @staticmethod
    def _run_colony(fc: FleetContext, tick: int) -> str:
        run = fc.colony.run(tick)
        return (f"{len(run.transfers)} transfers, {len(run.new_targets)} targets"
                + (", claim requested" if run.claim is not None else ""))

    def _run_sites(self, fc: FleetContext, tick: int, targets: list[str],
                   report: TickReport) -> dict[str, SiteProfile]:
        profiles: dict[str, SiteProfile] = {}
        for site in self.env.owned_sites():
            def turn(site: str = site) -> str:
                if report.emergency_mode:
                    run = fc.scheduler.run_reduced(site, tick)
                else:
                    run = fc.scheduler.run(site, tick, fc.colony.remotes_for(site), targets)
                profiles[site] = run.profile
                report.extend(run.results)
                return run.summary()

            result = report.add(guarded(site, turn))
            if isinstance(result, StepFailed):
                logger.error("site %s failed; resetting its record", site,
                             exc_info=result.error)
                fc.memory.sites[site] = SiteRecord()
                self.events.emit(tick, events.SITE_RESET, site=site,
                                 error=type(result.error).__name__)
        return profiles

    def _run_orphans(self, fc: FleetContext, tick: int,
                     profiles: dict[str, SiteProfile], report: TickReport) -> None:
        orphans = [
            name for name in self.env.worker_names()
            if (record := fc.memory.worker(name)) is not None and record.home not in profiles
        ]
        if report.emergency_mode:
            orphans = [n for n in orphans if in_batch(n, tick, self.config.cpu.batches)]
        if orphans:
            report.extend(fc.scheduler.dispatch(orphans))

    def _relieve(self, fc: FleetContext, profiles: dict[str, SiteProfile]) -> None:
        for profile in profiles.values():
            request = fc.planner.relief(profile, profiles.values(), fc.queue.pending())
            if request is not None:
                fc.queue.enqueue(request)

    def _cleanup_memory(self, fc: FleetContext, tick: int) -> None:
        gone = fc.memory.forget_missing(set(self.env.worker_names()))
        for name in gone:
            fc.registry.unassign(name)
        if gone:
            logger.debug("forgot %d expired worker record(s)", len(gone))
        fc.colony.cleanup(tick)
        if isinstance(self.site_map, GridSiteMap):
            self.site_map.forget()


def stats(fc: FleetContext) -> dict[str, Any]:
    """Statistics snapshot used by the periodic dump and the console."""
    roles: dict[str, int] = {}
    for record in fc.memory.workers.values():
        roles[record.role] = roles.get(record.role, 0) + 1
    return {
        "workers": len(fc.memory.workers),
        "roles": dict(sorted(roles.items())),
        "tasks": len(fc.registry),
        "task_stats": fc.registry.stats,
        "queued": len(fc.queue),
        "owned": list(fc.colony.state.owned),
        "reserved": list(fc.colony.state.reserved),
        "targets": fc.colony.state.target_names(),
        "expansion": dict(fc.colony.state.stats),
        "spawned": fc.events.total(events.SPAWNED),
        "dropped": fc.events.total(events.REQUEST_DROPPED),
        "transfers": fc.events.total(events.TRANSFER),
    }


def make_fleet_system(fleet: Fleet,
                      on_report: Callable[[TickReport], None] | None = None
                      ) -> Callable[[World, TickContext], None]:
    """Return a system running one fleet tick per engine tick.

    Nothing a tick does escapes this system: step failures are reported in
    the :class:`TickReport` handed to ``on_report``, and anything raised
    outside the per-site and per-worker boundaries is logged here and the
    tick is abandoned without persisting.
    """

    def fleet_system(world: World, ctx: TickContext) -> None:
        try:
            report = fleet.tick(ctx)
        except Exception:
            logger.exception("tick %d: fleet tick aborted", ctx.tick_number)
            report = TickReport(ctx.tick_number)
            report.add(StepFailed("fleet", RuntimeError("tick aborted")))
        if on_report is not None:
            on_report(report)

    return fleet_system


__all__ = ["Fleet", "FleetContext", "make_fleet_system", "stats"]
