"""Versioned persisted state.

Everything the fleet needs to survive between ticks lives in a single
:class:`FleetMemory`, serialized as plain JSON-compatible dicts. Records are
typed dataclasses; loading older data runs :func:`migrate` once, loading
data from a newer schema raises :class:`MemoryVersionError`.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any

from tick_fleet.types import MemoryVersionError, Role, WorkerState

logger = logging.getLogger(__name__)

MEMORY_VERSION = 3


@dataclass
class WorkerRecord:
    """Decision state of one worker.

    Attributes:
        role: Role value; selects the behavior routine.
        home: Site the worker was produced for.
        target_site: Site the worker operates in when it differs from ``home``.
        state: Fill-level state (``WorkerState`` value).
        task_id: Currently assigned task, if any.
        working: True while the worker spends its load rather than gathering.
        data: Role-specific scratch values.
    """

    role: str
    home: str
    target_site: str | None = None
    state: str = WorkerState.GATHERING.value
    task_id: str | None = None
    working: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def operating_site(self) -> str:
        return self.target_site or self.home

    def reset(self) -> None:
        """Return to the role's default decision state."""
        self.state = WorkerState.GATHERING.value
        self.task_id = None
        self.working = False
        self.data.clear()


@dataclass
class SiteRecord:
    """Per-site counters kept between ticks."""

    level: int = 0
    role_counts: dict[str, int] = field(default_factory=dict)
    energy_available: int = 0
    energy_capacity: int = 0
    stored: int = 0
    emergency: bool = False
    last_notified: int = -1
    construction: int = 0
    damaged: int = 0


@dataclass
class FleetMemory:
    version: int = MEMORY_VERSION
    workers: dict[str, WorkerRecord] = field(default_factory=dict)
    sites: dict[str, SiteRecord] = field(default_factory=dict)
    colony: dict[str, Any] = field(default_factory=dict)
    tasks: list[dict[str, Any]] = field(default_factory=list)
    queues: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def worker(self, name: str) -> WorkerRecord | None:
        return self.workers.get(name)

    def site(self, name: str) -> SiteRecord:
        record = self.sites.get(name)
        if record is None:
            record = self.sites[name] = SiteRecord()
        return record

    def remember(self, name: str, record: WorkerRecord) -> None:
        self.workers[name] = record

    def forget_missing(self, alive: set[str]) -> list[str]:
        """Drop records of workers no longer in the world. Returns their names."""
        gone = sorted(n for n in self.workers if n not in alive)
        for name in gone:
            del self.workers[name]
        return gone

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "workers": {n: dataclasses.asdict(r) for n, r in self.workers.items()},
            "sites": {n: dataclasses.asdict(r) for n, r in self.sites.items()},
            "colony": self.colony,
            "tasks": self.tasks,
            "queues": self.queues,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None,
                  version: int = MEMORY_VERSION) -> FleetMemory:
        """Load persisted memory, migrating it to *version* when older."""
        if not data:
            return cls(version=version)
        stored = data.get("version", 0)
        if stored > version:
            raise MemoryVersionError(
                f"Persisted memory has version {stored}, code understands {version}"
            )
        if stored < version:
            data = migrate(data, version)
        return cls(
            version=version,
            workers={n: WorkerRecord(**r) for n, r in data.get("workers", {}).items()},
            sites={n: SiteRecord(**r) for n, r in data.get("sites", {}).items()},
            colony=dict(data.get("colony", {})),
            tasks=list(data.get("tasks", [])),
            queues={s: list(q) for s, q in data.get("queues", {}).items()},
        )


_WORKER_FIELDS = {f.name for f in dataclasses.fields(WorkerRecord)}
_ROLES = {r.value for r in Role}


def migrate(data: dict[str, Any], version: int) -> dict[str, Any]:
    """Bring older persisted data up to *version*.

    Worker records keep their identity (role, home, target site) and are
    reset to the role's default state; unknown roles become gatherers.
    Site records and the task table are rebuilt from scratch by the next
    tick, so they are dropped. Colony state and production queues carry over.
    """
    workers: dict[str, dict[str, Any]] = {}
    for name, raw in (data.get("workers") or {}).items():
        if not isinstance(raw, dict):
            continue
        role = raw.get("role")
        if role not in _ROLES:
            role = Role.HARVESTER.value
        home = raw.get("home") or raw.get("homeRoom") or raw.get("home_site")
        if not home:
            continue
        record = WorkerRecord(
            role=role,
            home=home,
            target_site=raw.get("target_site") or raw.get("targetRoom"),
        )
        extra = {k: v for k, v in raw.items() if k not in _WORKER_FIELDS}
        if extra:
            logger.debug("migrate: dropping fields %s from %s", sorted(extra), name)
        workers[name] = dataclasses.asdict(record)
    logger.info(
        "migrated memory from version %s to %s (%d workers kept)",
        data.get("version", 0), version, len(workers),
    )
    return {
        "version": version,
        "workers": workers,
        "sites": {},
        "colony": data.get("colony") or {},
        "tasks": [],
        "queues": data.get("queues") or {},
    }
