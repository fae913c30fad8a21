"""Environment - the simulated host the fleet decides against.

Wraps a :class:`tick.World` holding host components and exposes the
primitives the decision core consumes: lookups, worker production, and the
per-worker actions. Every primitive reports a :class:`ResultCode`; none of
them raise for game-rule violations.

Scans over a site are memoized in the current tick's cache. Creating
entities through this class invalidates the scans, removed entities are
filtered out on read, so cached results never return dead ids.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Sequence

from tick import TickCache
from tick_fleet.body import MAX_PARTS, body_cost, count_parts
from tick_fleet.components import (
    Agent, Body, ConstructionSite, Controller, Dropped, Hits, Hostile,
    Mineral, Position, Source, Spawner, Store, Structure, Terminal,
)
from tick_fleet.types import ENERGY, Part, ResultCode, StructureKind

if TYPE_CHECKING:
    from tick import EntityId, TickContext, World

logger = logging.getLogger(__name__)

HARVEST_POWER = 2
BUILD_POWER = 5
REPAIR_POWER = 100
UPGRADE_POWER = 1
DISMANTLE_POWER = 50
ATTACK_POWER = 30
RANGED_ATTACK_POWER = 10
HEAL_POWER = 12
CARRY_CAPACITY = 50
HITS_PER_PART = 100
TERMINAL_COOLDOWN = 10
DOWNGRADE_TIMER = 20_000
RESERVATION_MAX = 5000
SOURCE_REGEN = 300

# Progress needed to leave each controller level.
LEVEL_PROGRESS = {1: 200, 2: 45_000, 3: 135_000, 4: 405_000,
                  5: 1_215_000, 6: 3_645_000, 7: 10_935_000}

STRUCTURE_HITS = {
    StructureKind.SPAWN: 5000,
    StructureKind.EXTENSION: 1000,
    StructureKind.TOWER: 3000,
    StructureKind.CONTAINER: 250_000,
    StructureKind.STORAGE: 10_000,
    StructureKind.TERMINAL: 3000,
    StructureKind.ROAD: 5000,
    StructureKind.WALL: 300_000_000,
    StructureKind.RAMPART: 300_000_000,
    StructureKind.LINK: 1000,
}

STRUCTURE_CAPACITY = {
    StructureKind.SPAWN: 300,
    StructureKind.EXTENSION: 50,
    StructureKind.TOWER: 1000,
    StructureKind.CONTAINER: 2000,
    StructureKind.STORAGE: 1_000_000,
    StructureKind.TERMINAL: 300_000,
    StructureKind.LINK: 800,
}

_ENERGY_STRUCTURES = (StructureKind.SPAWN.value, StructureKind.EXTENSION.value)


def _chebyshev(a: Position, b: Position) -> int:
    return max(abs(a.x - b.x), abs(a.y - b.y))


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


class Environment:
    def __init__(self, world: World, username: str = "fleet", gcl: int = 1) -> None:
        self.world = world
        self.username = username
        self.gcl = gcl
        self.tick = 0
        self._cache = TickCache()
        self._names: dict[str, EntityId] = {}
        self._sites: set[str] = set()
        self.observed: set[str] = set()
        # Adopt whatever the world already holds (e.g. after a restore).
        for _, (pos,) in world.query(Position):
            self._sites.add(pos.site)
        for eid, (agent,) in world.query(Agent):
            self._names[agent.name] = eid

    # -- Tick lifecycle --

    def begin_tick(self, ctx: TickContext) -> None:
        """Adopt the tick's number and memo cache; clears external observations."""
        self.tick = ctx.tick_number
        self._cache = ctx.cache
        self.observed = set()

    def _invalidate(self) -> None:
        self._cache.invalidate("find")
        self._cache.invalidate("visible")

    # -- World construction --

    def add_site(self, name: str) -> None:
        self._sites.add(name)

    def _spawn(self, site: str, x: int, y: int, *components: Any) -> EntityId:
        self._sites.add(site)
        eid = self.world.spawn()
        self.world.attach(eid, Position(site, x, y))
        for comp in components:
            self.world.attach(eid, comp)
        self._invalidate()
        return eid

    def add_source(self, site: str, x: int, y: int, energy: int = 3000) -> EntityId:
        return self._spawn(site, x, y, Source(energy=energy, capacity=max(energy, 3000)))

    def add_mineral(self, site: str, x: int, y: int, kind: str) -> EntityId:
        return self._spawn(site, x, y, Mineral(kind))

    def add_controller(self, site: str, x: int = 25, y: int = 25, level: int = 0,
                       owner: str | None = None, reserved_by: str | None = None,
                       reservation: int = 0, downgrade: int = DOWNGRADE_TIMER) -> EntityId:
        return self._spawn(site, x, y, Controller(
            level=level, downgrade=downgrade, owner=owner,
            reserved_by=reserved_by, reservation=reservation,
        ))

    def add_structure(self, site: str, kind: StructureKind, x: int, y: int, *,
                      energy: int = 0, hits: int | None = None,
                      hits_max: int | None = None, owner: str | None = "") -> EntityId:
        """Create a structure. ``owner=""`` means owned by this fleet."""
        if owner == "":
            owner = self.username
        hmax = hits_max if hits_max is not None else STRUCTURE_HITS[kind]
        comps: list[Any] = [Structure(kind.value, owner),
                            Hits(hits if hits is not None else hmax, hmax)]
        capacity = STRUCTURE_CAPACITY.get(kind)
        if capacity is not None:
            comps.append(Store(amount=energy, capacity=capacity))
        if kind is StructureKind.TERMINAL:
            comps.append(Terminal())
        return self._spawn(site, x, y, *comps)

    def add_spawn(self, site: str, name: str, x: int = 20, y: int = 20,
                  energy: int = 300) -> EntityId:
        eid = self.add_structure(site, StructureKind.SPAWN, x, y, energy=energy)
        self.world.attach(eid, Spawner(name))
        return eid

    def add_construction_site(self, site: str, kind: StructureKind, x: int, y: int,
                              total: int = 1000, progress: int = 0) -> EntityId:
        return self._spawn(site, x, y, ConstructionSite(
            kind.value, progress=progress, total=total, owner=self.username,
        ))

    def add_dropped(self, site: str, x: int, y: int, amount: int) -> EntityId:
        return self._spawn(site, x, y, Dropped(amount))

    def add_hostile(self, site: str, x: int, y: int, *, owner: str = "Invader",
                    boosted: bool = False, parts: Sequence[Part] = (Part.ATTACK, Part.MOVE)) -> EntityId:
        return self._spawn(site, x, y, Hostile(owner, boosted),
                           Body([Part(p).value for p in parts]),
                           Hits(HITS_PER_PART * len(parts), HITS_PER_PART * len(parts)))

    def add_worker(self, name: str, site: str, parts: Sequence[Part], x: int = 25,
                   y: int = 25, energy: int = 0, ticks_to_live: int = 1500) -> EntityId:
        """Place a worker directly, bypassing production."""
        eid = self._spawn(site, x, y, *self._worker_components(name, parts, ticks_to_live))
        self.world.get(eid, Store).amount = energy
        self._names[name] = eid
        return eid

    def _worker_components(self, name: str, parts: Sequence[Part],
                           ticks_to_live: int) -> list[Any]:
        values = [Part(p).value for p in parts]
        return [
            Agent(name, self.username, ticks_to_live),
            Body(values),
            Store(capacity=CARRY_CAPACITY * count_parts(values, Part.CARRY)),
            Hits(HITS_PER_PART * len(values), HITS_PER_PART * len(values)),
        ]

    def remove(self, eid: EntityId) -> None:
        """Take an entity out of the world (death, destruction, decay)."""
        agent = self.world.find(eid, Agent)
        if agent is not None:
            self._names.pop(agent.name, None)
        self.world.despawn(eid)

    # -- Lookups --

    def resolve(self, eid: EntityId | None) -> bool:
        return eid is not None and self.world.alive(eid)

    def position(self, eid: EntityId) -> Position | None:
        return self.world.find(eid, Position)

    def get(self, eid: EntityId, ctype: type) -> Any:
        return self.world.find(eid, ctype)

    def worker(self, name: str) -> EntityId | None:
        eid = self._names.get(name)
        if eid is None or not self.world.alive(eid):
            return None
        return eid

    def worker_names(self) -> list[str]:
        return sorted(n for n, eid in self._names.items() if self.world.alive(eid))

    def find(self, site: str, *ctypes: type) -> list[tuple[EntityId, tuple[Any, ...]]]:
        key = ("find", site, ctypes)

        def scan() -> list[tuple[EntityId, tuple[Any, ...]]]:
            return [
                (eid, comps[1:])
                for eid, comps in self.world.query(Position, *ctypes)
                if comps[0].site == site
            ]

        return [(eid, comps) for eid, comps in self._cache.get_or_compute(key, scan)
                if self.world.alive(eid)]

    def sites(self) -> list[str]:
        return sorted(self._sites)

    def structures(self, site: str, *kinds: StructureKind,
                   mine: bool | None = None) -> list[tuple[EntityId, Structure]]:
        wanted = {k.value for k in kinds}
        result = []
        for eid, (structure,) in self.find(site, Structure):
            if wanted and structure.kind not in wanted:
                continue
            if mine is not None and (structure.owner == self.username) != mine:
                continue
            result.append((eid, structure))
        return result

    def controller(self, site: str) -> tuple[EntityId, Controller] | None:
        found = self.find(site, Controller)
        if not found:
            return None
        eid, (ctrl,) = found[0]
        return eid, ctrl

    def sources(self, site: str) -> list[EntityId]:
        return [eid for eid, _ in self.find(site, Source)]

    def minerals(self, site: str) -> list[str]:
        return [m.kind for _, (m,) in self.find(site, Mineral)]

    def hostiles(self, site: str) -> list[tuple[EntityId, Hostile]]:
        return [(eid, h) for eid, (h,) in self.find(site, Hostile)]

    def construction_sites(self, site: str) -> list[tuple[EntityId, ConstructionSite]]:
        return [(eid, cs) for eid, (cs,) in self.find(site, ConstructionSite)]

    def dropped(self, site: str) -> list[tuple[EntityId, Dropped]]:
        return [(eid, d) for eid, (d,) in self.find(site, Dropped)]

    def workers_in(self, site: str) -> list[tuple[EntityId, Agent]]:
        return [(eid, a) for eid, (a,) in self.find(site, Agent)
                if a.owner == self.username]

    def spawners(self, site: str) -> list[tuple[EntityId, Spawner]]:
        return [(eid, sp) for eid, (sp, st) in self.find(site, Spawner, Structure)
                if st.owner == self.username]

    def _energy_stores(self, site: str) -> list[Store]:
        return [store for _, (st, store) in self.find(site, Structure, Store)
                if st.kind in _ENERGY_STRUCTURES and st.owner == self.username]

    def energy_available(self, site: str) -> int:
        return sum(s.amount for s in self._energy_stores(site))

    def energy_capacity(self, site: str) -> int:
        return sum(s.capacity for s in self._energy_stores(site))

    def _single(self, site: str, kind: StructureKind) -> tuple[EntityId, Store] | None:
        for eid, (st, store) in self.find(site, Structure, Store):
            if st.kind == kind.value and st.owner == self.username:
                return eid, store
        return None

    def storage(self, site: str) -> tuple[EntityId, Store] | None:
        return self._single(site, StructureKind.STORAGE)

    def terminal(self, site: str) -> tuple[EntityId, Store] | None:
        return self._single(site, StructureKind.TERMINAL)

    def stored_energy(self, site: str) -> int:
        """Energy held in storage and terminal."""
        total = 0
        for found in (self.storage(site), self.terminal(site)):
            if found is not None:
                total += found[1].amount
        return total

    def visible(self, site: str) -> bool:
        def check() -> bool:
            if site in self.observed or self.workers_in(site):
                return True
            if self.structures(site, mine=True):
                return True
            found = self.controller(site)
            return found is not None and found[1].owner == self.username

        return self._cache.get_or_compute(("visible", site), check)

    def owned_sites(self) -> list[str]:
        return [s for s in self.sites()
                if (c := self.controller(s)) is not None and c[1].owner == self.username]

    def reserved_sites(self) -> list[str]:
        return [s for s in self.sites()
                if (c := self.controller(s)) is not None and c[1].owner is None
                and c[1].reserved_by == self.username]

    # -- Worker production --

    def spawn_worker(self, spawner: EntityId, parts: Sequence[Part],
                     name: str, ticks_to_live: int = 1500,
                     ticks_per_part: int = 3) -> ResultCode:
        sp = self.world.find(spawner, Spawner)
        pos = self.position(spawner)
        if sp is None or pos is None:
            return ResultCode.INVALID_TARGET
        if sp.spawning is not None:
            return ResultCode.BUSY
        if not parts or len(parts) > MAX_PARTS:
            return ResultCode.INVALID_ARGS
        if self.worker(name) is not None:
            return ResultCode.NAME_EXISTS
        cost = body_cost(parts)
        if cost > self.energy_available(pos.site):
            return ResultCode.NOT_ENOUGH_ENERGY
        for store in self._energy_stores(pos.site):
            take = min(cost, store.amount)
            store.amount -= take
            cost -= take
            if cost == 0:
                break
        eid = self._spawn(pos.site, pos.x, pos.y,
                          *self._worker_components(name, parts, ticks_to_live))
        self._names[name] = eid
        sp.spawning = name
        sp.remaining = ticks_per_part * len(parts)
        logger.debug("spawned %s at %s (%d parts)", name, pos.site, len(parts))
        return ResultCode.OK

    # -- Actions --

    def _parts(self, eid: EntityId) -> list[str]:
        body = self.world.find(eid, Body)
        return body.parts if body is not None else []

    def _in_range(self, a: EntityId, b: EntityId, rng: int) -> bool:
        pa, pb = self.position(a), self.position(b)
        return (pa is not None and pb is not None and pa.site == pb.site
                and _chebyshev(pa, pb) <= rng)

    def _carrier(self, worker: EntityId) -> Store | None:
        return self.world.find(worker, Store)

    def harvest(self, worker: EntityId, target: EntityId) -> ResultCode:
        source = self.world.find(target, Source)
        store = self._carrier(worker)
        if source is None or store is None:
            return ResultCode.INVALID_TARGET
        work = count_parts(self._parts(worker), Part.WORK)
        if work == 0:
            return ResultCode.NO_BODYPART
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        if source.energy <= 0:
            return ResultCode.NOT_ENOUGH_RESOURCES
        if store.capacity and store.full:
            return ResultCode.FULL
        amount = min(HARVEST_POWER * work, source.energy)
        source.energy -= amount
        if store.capacity:
            kept = min(amount, store.free)
            store.amount += kept
            amount -= kept
        if amount > 0:
            # Overflow drops to the ground like a static miner without CARRY.
            pos = self.position(worker)
            self.add_dropped(pos.site, pos.x, pos.y, amount)
        return ResultCode.OK

    def transfer(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        dest = self.world.find(target, Store)
        if store is None or dest is None or target == worker:
            return ResultCode.INVALID_TARGET
        if store.empty:
            return ResultCode.NOT_ENOUGH_RESOURCES
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        if dest.full:
            return ResultCode.FULL
        amount = min(store.amount, dest.free)
        store.amount -= amount
        dest.amount += amount
        return ResultCode.OK

    def withdraw(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        src = self.world.find(target, Store)
        if store is None or src is None or self.world.has(target, Agent):
            return ResultCode.INVALID_TARGET
        if store.full:
            return ResultCode.FULL
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        if src.empty:
            return ResultCode.NOT_ENOUGH_RESOURCES
        amount = min(src.amount, store.free)
        src.amount -= amount
        store.amount += amount
        return ResultCode.OK

    def pickup(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        drop = self.world.find(target, Dropped)
        if store is None or drop is None:
            return ResultCode.INVALID_TARGET
        if store.full:
            return ResultCode.FULL
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        amount = min(drop.amount, store.free)
        drop.amount -= amount
        store.amount += amount
        if drop.amount <= 0:
            self.remove(target)
        return ResultCode.OK

    def build(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        site = self.world.find(target, ConstructionSite)
        if store is None or site is None:
            return ResultCode.INVALID_TARGET
        work = count_parts(self._parts(worker), Part.WORK)
        if work == 0:
            return ResultCode.NO_BODYPART
        if store.empty:
            return ResultCode.NOT_ENOUGH_RESOURCES
        if not self._in_range(worker, target, 3):
            return ResultCode.NOT_IN_RANGE
        amount = min(BUILD_POWER * work, store.amount, site.total - site.progress)
        store.amount -= amount
        site.progress += amount
        if site.progress >= site.total:
            pos = self.position(target)
            self.remove(target)
            self.add_structure(pos.site, StructureKind(site.kind), pos.x, pos.y)
        return ResultCode.OK

    def repair(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        hits = self.world.find(target, Hits)
        if store is None or hits is None or not self.world.has(target, Structure):
            return ResultCode.INVALID_TARGET
        work = count_parts(self._parts(worker), Part.WORK)
        if work == 0:
            return ResultCode.NO_BODYPART
        if store.empty:
            return ResultCode.NOT_ENOUGH_RESOURCES
        if not self._in_range(worker, target, 3):
            return ResultCode.NOT_IN_RANGE
        if hits.hits >= hits.hits_max:
            return ResultCode.OK
        spend = min(work, store.amount)
        store.amount -= spend
        hits.hits = min(hits.hits_max, hits.hits + REPAIR_POWER * spend)
        return ResultCode.OK

    def upgrade(self, worker: EntityId, target: EntityId) -> ResultCode:
        store = self._carrier(worker)
        ctrl = self.world.find(target, Controller)
        if store is None or ctrl is None:
            return ResultCode.INVALID_TARGET
        if ctrl.owner != self.username:
            return ResultCode.NOT_OWNER
        work = count_parts(self._parts(worker), Part.WORK)
        if work == 0:
            return ResultCode.NO_BODYPART
        if store.empty:
            return ResultCode.NOT_ENOUGH_RESOURCES
        if not self._in_range(worker, target, 3):
            return ResultCode.NOT_IN_RANGE
        spend = min(UPGRADE_POWER * work, store.amount)
        store.amount -= spend
        ctrl.progress += spend
        ctrl.downgrade = DOWNGRADE_TIMER
        needed = LEVEL_PROGRESS.get(ctrl.level)
        if needed is not None and ctrl.progress >= needed:
            ctrl.progress -= needed
            ctrl.level += 1
            logger.info("controller in %s reached level %d",
                        self.position(target).site, ctrl.level)
        return ResultCode.OK

    def _damage(self, worker: EntityId, target: EntityId, part: Part,
                power: int, rng: int) -> ResultCode:
        hits = self.world.find(target, Hits)
        if hits is None or self.world.has(target, Agent) and \
                self.world.get(target, Agent).owner == self.username:
            return ResultCode.INVALID_TARGET
        n = count_parts(self._parts(worker), part)
        if n == 0:
            return ResultCode.NO_BODYPART
        if not self._in_range(worker, target, rng):
            return ResultCode.NOT_IN_RANGE
        hits.hits -= power * n
        if hits.hits <= 0:
            self.remove(target)
        return ResultCode.OK

    def attack(self, worker: EntityId, target: EntityId) -> ResultCode:
        return self._damage(worker, target, Part.ATTACK, ATTACK_POWER, 1)

    def ranged_attack(self, worker: EntityId, target: EntityId) -> ResultCode:
        return self._damage(worker, target, Part.RANGED_ATTACK, RANGED_ATTACK_POWER, 3)

    def dismantle(self, worker: EntityId, target: EntityId) -> ResultCode:
        if not self.world.has(target, Structure):
            return ResultCode.INVALID_TARGET
        return self._damage(worker, target, Part.WORK, DISMANTLE_POWER, 1)

    def heal(self, worker: EntityId, target: EntityId) -> ResultCode:
        hits = self.world.find(target, Hits)
        if hits is None or not self.world.has(target, Agent):
            return ResultCode.INVALID_TARGET
        n = count_parts(self._parts(worker), Part.HEAL)
        if n == 0:
            return ResultCode.NO_BODYPART
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        hits.hits = min(hits.hits_max, hits.hits + HEAL_POWER * n)
        return ResultCode.OK

    def claim(self, worker: EntityId, target: EntityId) -> ResultCode:
        ctrl = self.world.find(target, Controller)
        if ctrl is None:
            return ResultCode.INVALID_TARGET
        if count_parts(self._parts(worker), Part.CLAIM) == 0:
            return ResultCode.NO_BODYPART
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        if ctrl.owner is not None or ctrl.reserved_by not in (None, self.username):
            return ResultCode.INVALID_TARGET
        if len(self.owned_sites()) >= self.gcl:
            return ResultCode.GCL_NOT_ENOUGH
        ctrl.owner = self.username
        ctrl.level = 1
        ctrl.progress = 0
        ctrl.reserved_by = None
        ctrl.reservation = 0
        ctrl.downgrade = DOWNGRADE_TIMER
        self._invalidate()
        logger.info("claimed %s", self.position(target).site)
        return ResultCode.OK

    def reserve(self, worker: EntityId, target: EntityId) -> ResultCode:
        ctrl = self.world.find(target, Controller)
        if ctrl is None:
            return ResultCode.INVALID_TARGET
        n = count_parts(self._parts(worker), Part.CLAIM)
        if n == 0:
            return ResultCode.NO_BODYPART
        if not self._in_range(worker, target, 1):
            return ResultCode.NOT_IN_RANGE
        if ctrl.owner is not None or ctrl.reserved_by not in (None, self.username):
            return ResultCode.INVALID_TARGET
        ctrl.reserved_by = self.username
        ctrl.reservation = min(RESERVATION_MAX, ctrl.reservation + n)
        return ResultCode.OK

    def move_to(self, worker: EntityId, target: EntityId) -> ResultCode:
        dest = self.position(target)
        if dest is None:
            return ResultCode.INVALID_TARGET
        return self._step(worker, dest.site, dest.x, dest.y)

    def move_to_site(self, worker: EntityId, site: str) -> ResultCode:
        return self._step(worker, site, 25, 25)

    def _step(self, worker: EntityId, site: str, x: int, y: int) -> ResultCode:
        pos = self.position(worker)
        if pos is None:
            return ResultCode.INVALID_TARGET
        if count_parts(self._parts(worker), Part.MOVE) == 0:
            return ResultCode.NO_BODYPART
        if pos.site != site:
            # One border crossing per tick; pathing is out of scope.
            pos.site, pos.x, pos.y = site, 25, 25
            self._sites.add(site)
            self._invalidate()
            return ResultCode.OK
        pos.x += _sign(x - pos.x)
        pos.y += _sign(y - pos.y)
        return ResultCode.OK

    # -- Logistics --

    def send_energy(self, source_site: str, target_site: str, amount: int) -> ResultCode:
        """Move energy between two sites' terminals, drawing on storage as backing."""
        src = self.terminal(source_site)
        dst = self.terminal(target_site)
        if src is None or dst is None or source_site == target_site:
            return ResultCode.INVALID_TARGET
        src_eid, src_store = src
        terminal = self.world.get(src_eid, Terminal)
        if terminal.cooldown > 0:
            return ResultCode.TIRED
        if amount <= 0:
            return ResultCode.INVALID_ARGS
        if amount > self.stored_energy(source_site):
            return ResultCode.NOT_ENOUGH_RESOURCES
        sink = self.storage(target_site) or dst
        if sink[1].free < amount:
            return ResultCode.FULL
        remaining = amount
        backing = self.storage(source_site)
        for store in (src_store, backing[1] if backing else None):
            if store is None:
                continue
            take = min(remaining, store.amount)
            store.amount -= take
            remaining -= take
        sink[1].amount += amount
        terminal.cooldown = TERMINAL_COOLDOWN
        return ResultCode.OK

    # -- Host simulation --

    def advance(self) -> list[str]:
        """Advance host timers by one tick. Returns names of workers that expired."""
        expired: list[str] = []
        for _, (sp,) in self.world.query(Spawner):
            if sp.spawning is not None:
                sp.remaining -= 1
                if sp.remaining <= 0:
                    sp.spawning = None
                    sp.remaining = 0
        for eid, (agent,) in list(self.world.query(Agent)):
            agent.ticks_to_live -= 1
            if agent.ticks_to_live <= 0:
                expired.append(agent.name)
                self.remove(eid)
        for _, (source,) in self.world.query(Source):
            source.regen_in -= 1
            if source.regen_in <= 0:
                source.energy = source.capacity
                source.regen_in = SOURCE_REGEN
        for _, (terminal,) in self.world.query(Terminal):
            if terminal.cooldown > 0:
                terminal.cooldown -= 1
        for eid, (pos, ctrl) in self.world.query(Position, Controller):
            if ctrl.owner is not None:
                ctrl.downgrade -= 1
                if ctrl.downgrade <= 0:
                    ctrl.level -= 1
                    ctrl.downgrade = DOWNGRADE_TIMER
                    if ctrl.level <= 0:
                        logger.warning("controller in %s downgraded to neutral", pos.site)
                        ctrl.owner = None
                        ctrl.level = 0
                        self._invalidate()
            elif ctrl.reservation > 0:
                ctrl.reservation -= 1
                if ctrl.reservation == 0:
                    ctrl.reserved_by = None
        return expired


def make_world_system(env: Environment,
                      on_expire: Callable[[list[str]], None] | None = None
                      ) -> Callable[[World, TickContext], None]:
    """Return a system that advances the simulated host by one tick.

    ``on_expire(names)`` fires with the workers that reached the end of
    their lifespan this tick.
    """

    def world_system(world: World, ctx: TickContext) -> None:
        env.begin_tick(ctx)
        expired = env.advance()
        if expired and on_expire is not None:
            on_expire(expired)

    return world_system
