"""ProductionQueue - per-site priority queues of worker production requests.

Requests wait in strict priority order (FIFO among equals). Each tick the
head request of every site with an idle production facility is attempted.
Running short of energy is backpressure: the request waits without
penalty. Any other rejection counts as a retry, and a request is dropped
with a warning once it has been rejected ``max_retries`` times.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from tick_fleet import events
from tick_fleet.body import body_cost
from tick_fleet.config import SpawnConfig
from tick_fleet.memory import WorkerRecord
from tick_fleet.types import Part, ResultCode, Role

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.environment import Environment
    from tick_fleet.events import EventLog
    from tick_fleet.memory import FleetMemory

logger = logging.getLogger(__name__)


@dataclass
class ProductionRequest:
    """A worker waiting to be produced.

    Attributes:
        role: Role of the new worker.
        body: Equipment manifest to build.
        priority: Higher is served first.
        site: Site whose facilities produce the worker.
        memory: Initial record values (``home``, ``target_site`` and
            role-specific data). ``home`` defaults to ``site``.
        retries: Structural rejections so far.
        name: Fixed worker name; generated at production time when None.
        seq: Enqueue order, assigned by the queue.
    """

    role: Role
    body: list[Part]
    priority: int
    site: str
    memory: dict[str, Any] = field(default_factory=dict)
    retries: int = 0
    name: str | None = None
    seq: int = 0

    @property
    def cost(self) -> int:
        return body_cost(self.body)

    @property
    def home(self) -> str:
        """Site the produced worker will belong to."""
        return self.memory.get("home", self.site)

    @property
    def target_site(self) -> str | None:
        return self.memory.get("target_site")

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "body": [p.value for p in self.body],
            "priority": self.priority,
            "site": self.site,
            "memory": dict(self.memory),
            "retries": self.retries,
            "name": self.name,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProductionRequest:
        return cls(
            role=Role(data["role"]),
            body=[Part(p) for p in data["body"]],
            priority=data["priority"],
            site=data["site"],
            memory=dict(data.get("memory", {})),
            retries=data.get("retries", 0),
            name=data.get("name"),
            seq=data.get("seq", 0),
        )


class ProductionSink(Protocol):
    """Narrow interface for code that requests workers and retires a site's backlog."""

    def submit(self, request: ProductionRequest) -> ProductionRequest: ...

    def pending(self, site: str | None = None) -> list[ProductionRequest]: ...

    def drop_site(self, site: str) -> int: ...


def worker_name(role: Role, tick: int, rng: random.Random) -> str:
    return f"{role.value}_{tick}_{rng.randrange(1000)}"


class ProductionQueue:
    def __init__(self, env: Environment, memory: FleetMemory,
                 config: SpawnConfig | None = None,
                 event_log: EventLog | None = None) -> None:
        self._env = env
        self._memory = memory
        self._config = config or SpawnConfig()
        self._events = event_log
        self._queues: dict[str, list[ProductionRequest]] = {}
        self._seq = 0

    def enqueue(self, request: ProductionRequest) -> ProductionRequest:
        self._seq += 1
        request.seq = self._seq
        queue = self._queues.setdefault(request.site, [])
        queue.append(request)
        queue.sort(key=lambda r: (-r.priority, r.seq))
        logger.debug(
            "queued %s at %s (priority %d, cost %d)",
            request.role.value, request.site, request.priority, request.cost,
        )
        return request

    submit = enqueue

    def pending(self, site: str | None = None) -> list[ProductionRequest]:
        if site is not None:
            return list(self._queues.get(site, ()))
        return [r for s in sorted(self._queues) for r in self._queues[s]]

    def drop_site(self, site: str) -> int:
        """Forget every request of *site*. Returns how many were dropped."""
        return len(self._queues.pop(site, ()))

    def process_tick(self, rng: random.Random | None = None) -> list[str]:
        """Attempt the head request of every site. Returns names produced."""
        rng = rng or random.Random()
        produced: list[str] = []
        owned = set(self._env.owned_sites())
        for site in sorted(self._queues):
            queue = self._queues[site]
            # A lost site keeps its spawners but must not produce for us.
            if not queue or site not in owned:
                continue
            idle = [eid for eid, sp in self._env.spawners(site) if sp.spawning is None]
            if not idle:
                continue
            name = self._attempt(site, queue, idle[0], rng)
            if name is not None:
                produced.append(name)
        return produced

    def _attempt(self, site: str, queue: list[ProductionRequest], spawner: EntityId,
                 rng: random.Random) -> str | None:
        request = queue[0]
        tick = self._env.tick
        name = request.name or worker_name(request.role, tick, rng)
        code = self._env.spawn_worker(
            spawner, request.body, name,
            ticks_to_live=self._config.lifespan,
            ticks_per_part=self._config.ticks_per_part,
        )
        if code is ResultCode.OK:
            queue.pop(0)
            self._memory.remember(name, self._record(request))
            logger.info("produced %s (%s) at %s", name, request.role.value, site)
            if self._events is not None:
                self._events.emit(tick, events.SPAWNED, site=site, name=name,
                                  role=request.role.value, cost=request.cost)
            return name
        if code is ResultCode.NOT_ENOUGH_ENERGY:
            return None
        request.retries += 1
        if request.retries >= self._config.max_retries:
            queue.pop(0)
            logger.warning(
                "dropping %s request at %s after %d rejections (last: %s)",
                request.role.value, site, request.retries, code.value,
            )
            if self._events is not None:
                self._events.emit(tick, events.REQUEST_DROPPED, site=site,
                                  role=request.role.value, reason=code.value)
        else:
            logger.debug(
                "%s request at %s rejected (%s), retry %d",
                request.role.value, site, code.value, request.retries,
            )
        return None

    @staticmethod
    def _record(request: ProductionRequest) -> WorkerRecord:
        data = {k: v for k, v in request.memory.items() if k not in ("home", "target_site")}
        return WorkerRecord(
            role=request.role.value,
            home=request.home,
            target_site=request.target_site,
            data=data,
        )

    # -- Persistence --

    def save(self) -> dict[str, list[dict[str, Any]]]:
        return {site: [r.to_dict() for r in queue]
                for site, queue in self._queues.items() if queue}

    def load(self, data: dict[str, list[dict[str, Any]]]) -> None:
        self._queues.clear()
        for site, raw in data.items():
            queue = [ProductionRequest.from_dict(d) for d in raw]
            queue.sort(key=lambda r: (-r.priority, r.seq))
            self._queues[site] = queue
            for request in queue:
                self._seq = max(self._seq, request.seq)

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())
