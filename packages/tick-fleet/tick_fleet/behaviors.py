"""Worker behavior routines.

Every role is an entry in a closed table mapping :class:`Role` to its
traits: the task types it accepts from the registry and a default routine
run when the registry has nothing for it. A worker first asks the registry
for its best task; only when there is none does the default routine run.

Default routines drive the fill-level state machine: an empty worker
gathers, a full one works.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from tick_fleet.components import ConstructionSite, Hits, Source, Store, Structure
from tick_fleet.config import TaskConfig
from tick_fleet.profile import needs_repair
from tick_fleet.sites import neighbors
from tick_fleet.types import ResultCode, Role, StructureKind, TaskStatus, TaskType, WorkerState

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.environment import Environment
    from tick_fleet.memory import FleetMemory, WorkerRecord
    from tick_fleet.tasks import Task, TaskRegistry

logger = logging.getLogger(__name__)

Default = Callable[["Environment", "EntityId", "WorkerRecord"], str]

_GATHER_TASKS = frozenset({TaskType.HARVEST, TaskType.WITHDRAW, TaskType.PICKUP})
_SPEND_TARGETS = (StructureKind.SPAWN, StructureKind.EXTENSION)
SCOUT_DWELL = 50
_REPAIR_THRESHOLDS = TaskConfig()


@dataclass(frozen=True)
class RoleTraits:
    accepts: frozenset[TaskType]
    default: Default


# --- Shared steps ---


def _store(env: Environment, eid: EntityId) -> Store | None:
    return env.get(eid, Store)


def _site_of(env: Environment, eid: EntityId) -> str:
    return env.position(eid).site


def _update_state(env: Environment, eid: EntityId, record: WorkerRecord) -> None:
    store = _store(env, eid)
    if store is None or store.capacity == 0:
        return
    if store.empty:
        record.state = WorkerState.GATHERING.value
        record.working = False
    elif store.full:
        record.state = WorkerState.WORKING.value
        record.working = True


def _nearest(env: Environment, eid: EntityId, targets: list[EntityId]) -> EntityId | None:
    here = env.position(eid)
    best = None
    best_key = None
    for target in targets:
        pos = env.position(target)
        if pos is None or pos.site != here.site:
            continue
        key = (max(abs(pos.x - here.x), abs(pos.y - here.y)), target)
        if best_key is None or key < best_key:
            best, best_key = target, key
    return best


def _act(env: Environment, eid: EntityId, target: EntityId,
         action: Callable[[EntityId, EntityId], ResultCode]) -> ResultCode:
    code = action(eid, target)
    if code is ResultCode.NOT_IN_RANGE:
        env.move_to(eid, target)
    return code


def _travel(env: Environment, eid: EntityId, site: str | None) -> bool:
    """Head for *site*. True while still on the way."""
    if site is None or _site_of(env, eid) == site:
        return False
    env.move_to_site(eid, site)
    return True


def _harvest(env: Environment, eid: EntityId) -> str:
    site = _site_of(env, eid)
    active = [s for s, (src,) in env.find(site, Source) if src.energy > 0]
    target = _nearest(env, eid, active)
    if target is None:
        return "no source"
    _act(env, eid, target, env.harvest)
    return "harvesting"


def _refill(env: Environment, eid: EntityId) -> str:
    """Take energy from the site's stock, harvesting when there is none."""
    site = _site_of(env, eid)
    drops = [d for d, drop in env.dropped(site) if drop.amount > 0]
    target = _nearest(env, eid, drops)
    if target is not None:
        _act(env, eid, target, env.pickup)
        return "picking up"
    stocked = [s for s, (st, store) in env.find(site, Structure, Store)
               if st.kind in (StructureKind.STORAGE.value, StructureKind.CONTAINER.value)
               and not store.empty]
    target = _nearest(env, eid, stocked)
    if target is not None:
        _act(env, eid, target, env.withdraw)
        return "withdrawing"
    return _harvest(env, eid)


def _deliver(env: Environment, eid: EntityId) -> str:
    """Fill spawns and extensions, then towers, then storage; upgrade otherwise."""
    site = _site_of(env, eid)
    for kinds in (_SPEND_TARGETS, (StructureKind.TOWER,), (StructureKind.STORAGE,)):
        wanting = [s for s, _ in env.structures(site, *kinds, mine=True)
                   if not env.get(s, Store).full]
        target = _nearest(env, eid, wanting)
        if target is not None:
            _act(env, eid, target, env.transfer)
            return "delivering"
    return _upgrade(env, eid)


def _upgrade(env: Environment, eid: EntityId) -> str:
    found = env.controller(_site_of(env, eid))
    if found is None or found[1].owner != env.username:
        return "no controller"
    _act(env, eid, found[0], env.upgrade)
    return "upgrading"


# --- Role defaults ---


def _harvester(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.home):
        return "returning"
    if record.working:
        return _deliver(env, eid)
    return _harvest(env, eid)


def _upgrader(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.home):
        return "returning"
    return _upgrade(env, eid) if record.working else _refill(env, eid)


def _builder(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.home):
        return "returning"
    if not record.working:
        return _refill(env, eid)
    target = _nearest(env, eid, [c for c, _ in env.find(_site_of(env, eid), ConstructionSite)])
    if target is None:
        return _upgrade(env, eid)
    _act(env, eid, target, env.build)
    return "building"


def _repairer(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.home):
        return "returning"
    if not record.working:
        return _refill(env, eid)
    damaged = [
        (hits.hits, s) for s, (st, hits) in env.find(_site_of(env, eid), Structure, Hits)
        if st.owner in (None, env.username) and needs_repair(st.kind, hits, _REPAIR_THRESHOLDS)
    ]
    if not damaged:
        return _upgrade(env, eid)
    _act(env, eid, min(damaged)[1], env.repair)
    return "repairing"


def _hauler(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if record.working:
        if _travel(env, eid, record.home):
            return "returning"
        return _deliver(env, eid)
    if _travel(env, eid, record.target_site or record.home):
        return "travelling"
    site = _site_of(env, eid)
    drops = [d for d, drop in env.dropped(site) if drop.amount > 0]
    containers = [s for s, (st, store) in env.find(site, Structure, Store)
                  if st.kind == StructureKind.CONTAINER.value and not store.empty]
    target = _nearest(env, eid, drops)
    if target is not None:
        _act(env, eid, target, env.pickup)
        return "picking up"
    target = _nearest(env, eid, containers)
    if target is not None:
        _act(env, eid, target, env.withdraw)
        return "withdrawing"
    return "waiting"


def _remote_harvester(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if record.working:
        if _travel(env, eid, record.home):
            return "returning"
        return _deliver(env, eid)
    if _travel(env, eid, record.target_site):
        return "travelling"
    return _harvest(env, eid)


def _controller_action(action_name: str, label: str) -> Default:
    def default(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
        if _travel(env, eid, record.target_site):
            return "travelling"
        found = env.controller(_site_of(env, eid))
        if found is None:
            return "no controller"
        code = _act(env, eid, found[0], getattr(env, action_name))
        if code is ResultCode.OK:
            record.data["last_action"] = env.tick
        return label

    default.__name__ = f"_{label}"
    return default


def _defender(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.target_site or record.home):
        return "travelling"
    target = _nearest(env, eid, [h for h, _ in env.hostiles(_site_of(env, eid))])
    if target is None:
        return "guarding"
    _act(env, eid, target, env.attack)
    return "attacking"


def _scout(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    here = _site_of(env, eid)
    if record.target_site is None or (
            here == record.target_site
            and env.tick - record.data.get("arrived", env.tick) >= SCOUT_DWELL):
        options = neighbors(here)
        record.target_site = options[env.tick % len(options)]
        record.data.pop("arrived", None)
    if _travel(env, eid, record.target_site):
        return "scouting"
    env.observed.add(here)
    record.data.setdefault("arrived", env.tick)
    return "observing"


def _destroyer(env: Environment, eid: EntityId, record: WorkerRecord) -> str:
    if _travel(env, eid, record.target_site):
        return "travelling"
    hostile = [s for s, st in env.structures(_site_of(env, eid), mine=False)
               if st.owner is not None]
    target = _nearest(env, eid, hostile)
    if target is None:
        return "nothing to dismantle"
    _act(env, eid, target, env.dismantle)
    return "dismantling"


_T = TaskType

ROLES: dict[Role, RoleTraits] = {
    Role.HARVESTER: RoleTraits(frozenset({_T.HARVEST, _T.TRANSFER}), _harvester),
    Role.UPGRADER: RoleTraits(frozenset({_T.UPGRADE, _T.WITHDRAW, _T.PICKUP}), _upgrader),
    Role.BUILDER: RoleTraits(
        frozenset({_T.BUILD, _T.REPAIR, _T.WITHDRAW, _T.PICKUP, _T.HARVEST}), _builder),
    Role.HAULER: RoleTraits(frozenset({_T.TRANSFER, _T.WITHDRAW, _T.PICKUP}), _hauler),
    Role.REPAIRER: RoleTraits(
        frozenset({_T.REPAIR, _T.WITHDRAW, _T.PICKUP, _T.HARVEST}), _repairer),
    Role.DEFENDER: RoleTraits(
        frozenset({_T.ATTACK, _T.RANGED_ATTACK, _T.HEAL}), _defender),
    Role.CLAIMER: RoleTraits(frozenset({_T.CLAIM}), _controller_action("claim", "claiming")),
    Role.RESERVER: RoleTraits(
        frozenset({_T.RESERVE}), _controller_action("reserve", "reserving")),
    Role.REMOTE_HARVESTER: RoleTraits(frozenset({_T.HARVEST}), _remote_harvester),
    Role.SCOUT: RoleTraits(frozenset(), _scout),
    Role.DESTROYER: RoleTraits(frozenset({_T.DISMANTLE}), _destroyer),
}


def _task_state(task: Task) -> str:
    if task.type is TaskType.TRANSFER:
        return WorkerState.TRANSFERRING.value
    if task.type in _GATHER_TASKS:
        return WorkerState.GATHERING.value
    return WorkerState.WORKING.value


class Behaviors:
    """Dispatches workers to their role's routine."""

    def __init__(self, env: Environment, registry: TaskRegistry,
                 memory: FleetMemory) -> None:
        self._env = env
        self._registry = registry
        self._memory = memory

    def run(self, name: str) -> str:
        """Run one tick for worker *name*. Returns a short description."""
        eid = self._env.worker(name)
        record = self._memory.worker(name)
        if eid is None or record is None:
            return "absent"
        traits = ROLES[Role(record.role)]
        if traits.accepts:
            task = self._registry.find_best_task(name, traits.accepts)
            if task is not None:
                status = self._registry.execute(name, task)
                if status is TaskStatus.IN_PROGRESS:
                    record.state = _task_state(task)
                else:
                    _update_state(self._env, eid, record)
                return f"{task.id}: {status.value}"
            if self._registry.task_of(name) is not None:
                self._registry.unassign(name)
        _update_state(self._env, eid, record)
        detail = traits.default(self._env, eid, record)
        if detail in ("waiting", "guarding", "no source", "nothing to dismantle"):
            record.state = WorkerState.IDLE.value
            self._registry.note_idle(name)
        return detail

    def reset(self, name: str) -> None:
        """Put a worker back to its role's default state after a failure."""
        self._registry.unassign(name)
        record = self._memory.worker(name)
        if record is not None:
            record.reset()
