"""TaskRegistry - creates, matches, executes and expires units of work.

A task names a target entity, a type and a priority. Workers are matched
to the best task their body can perform in the site they stand in; a
worker is assignee of at most one task at a time. Tasks disappear when
they complete, when their target stops resolving, when they grow too old
or when nobody has worked on them for a while.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Collection, MutableMapping

from tick_fleet.body import can_perform
from tick_fleet.components import Body, Position
from tick_fleet.config import TaskConfig
from tick_fleet.execution import EXECUTORS, ready, satisfied
from tick_fleet.types import TaskStatus, TaskType, UnknownTaskError

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.environment import Environment
    from tick_fleet.memory import WorkerRecord

logger = logging.getLogger(__name__)


@dataclass
class Task:
    """A unit of work.

    Attributes:
        id: ``<type>_<tick>_<seq>``.
        type: What the assignee does to the target.
        target_id: Entity the task acts on. May stop resolving at any time.
        priority: Higher is more urgent.
        site: Site owning the task; only workers standing there match it.
        created_at: Tick of creation.
        seq: Registry-wide creation counter, used to break priority ties.
        assigned: Names of workers currently on the task.
        resource: Optional resource kind the task moves.
        amount: Optional amount (goal reservation for reserve tasks).
        data: Free-form payload.
        idle_since: Tick the task last lost its final assignee, or None
            while someone is assigned.
    """

    id: str
    type: TaskType
    target_id: EntityId
    priority: int
    site: str
    created_at: int
    seq: int = 0
    assigned: list[str] = field(default_factory=list)
    resource: str | None = None
    amount: int | None = None
    data: dict[str, Any] = field(default_factory=dict)
    idle_since: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "target_id": self.target_id,
            "priority": self.priority,
            "site": self.site,
            "created_at": self.created_at,
            "seq": self.seq,
            "assigned": list(self.assigned),
            "resource": self.resource,
            "amount": self.amount,
            "data": dict(self.data),
            "idle_since": self.idle_since,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=data["id"],
            type=TaskType(data["type"]),
            target_id=data["target_id"],
            priority=data["priority"],
            site=data["site"],
            created_at=data["created_at"],
            seq=data.get("seq", 0),
            assigned=list(data.get("assigned", [])),
            resource=data.get("resource"),
            amount=data.get("amount"),
            data=dict(data.get("data", {})),
            idle_since=data.get("idle_since"),
        )


class TaskRegistry:
    """The shared task table.

    ``records`` is the persisted worker table; the registry keeps each
    record's ``task_id`` in step with its own assignment index. ``stats``
    may be shared so that counters outlive the registry instance.
    """

    def __init__(self, env: Environment, config: TaskConfig | None = None,
                 records: MutableMapping[str, WorkerRecord] | None = None,
                 stats: Counter[str] | None = None) -> None:
        self._env = env
        self._config = config or TaskConfig()
        self._records = records if records is not None else {}
        self._tasks: dict[str, Task] = {}
        self._by_worker: dict[str, str] = {}
        self._seq = 0
        self._stats: Counter[str] = stats if stats is not None else Counter()

    @property
    def config(self) -> TaskConfig:
        return self._config

    # -- Table --

    def create(self, type: TaskType, target: EntityId, priority: int, site: str, *,
               resource: str | None = None, amount: int | None = None,
               data: dict[str, Any] | None = None) -> str:
        """Add a task and return its id.

        No de-duplication happens here; callers check :meth:`existing` first.
        """
        tick = self._env.tick
        self._seq += 1
        task_id = f"{type.value}_{tick}_{self._seq}"
        self._tasks[task_id] = Task(
            id=task_id, type=type, target_id=target, priority=priority,
            site=site, created_at=tick, seq=self._seq, resource=resource,
            amount=amount, data=dict(data or {}), idle_since=tick,
        )
        self._stats["created"] += 1
        logger.debug("task %s created (priority %d, site %s)", task_id, priority, site)
        return task_id

    def get(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def find(self, task_id: str | None) -> Task | None:
        if task_id is None:
            return None
        return self._tasks.get(task_id)

    def existing(self, target: EntityId, type: TaskType) -> Task | None:
        """Live task of *type* already aimed at *target*, if any."""
        for task in self._tasks.values():
            if task.target_id == target and task.type is type:
                return task
        return None

    def tasks(self, site: str | None = None) -> list[Task]:
        return [t for t in self._tasks.values() if site is None or t.site == site]

    def task_of(self, worker: str) -> Task | None:
        return self.find(self._by_worker.get(worker))

    def remove(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        for name in task.assigned:
            self._forget(name, task_id)
        return True

    def _forget(self, worker: str, task_id: str) -> None:
        if self._by_worker.get(worker) == task_id:
            del self._by_worker[worker]
        record = self._records.get(worker)
        if record is not None and record.task_id == task_id:
            record.task_id = None

    # -- Matching --

    def find_best_task(self, worker: str,
                       types: Collection[TaskType] | None = None) -> Task | None:
        """Highest-priority task the worker can do in the site it stands in.

        *types* narrows the search to the task types a role accepts.

        Ties go to the oldest task (lowest creation sequence), so repeated
        calls on the same state return the same task.
        """
        eid = self._env.worker(worker)
        if eid is None:
            return None
        pos = self._env.get(eid, Position)
        body = self._env.get(eid, Body)
        if pos is None or body is None:
            return None
        best: Task | None = None
        for task in self._tasks.values():
            if task.site != pos.site or not self._env.resolve(task.target_id):
                continue
            if types is not None and task.type not in types:
                continue
            if not can_perform(body.parts, task.type):
                continue
            if not ready(self._env, eid, task):
                continue
            if best is None or (task.priority, -task.seq) > (best.priority, -best.seq):
                best = task
        return best

    def assign(self, worker: str, task: Task) -> None:
        """Put *worker* on *task*, taking it off any task it held before."""
        current = self._by_worker.get(worker)
        if current == task.id:
            return
        if current is not None:
            self.unassign(worker)
        task.assigned.append(worker)
        task.idle_since = None
        self._by_worker[worker] = task.id
        record = self._records.get(worker)
        if record is not None:
            record.task_id = task.id

    def unassign(self, worker: str) -> Task | None:
        """Take *worker* off its task. The task itself stays in the table."""
        task_id = self._by_worker.pop(worker, None)
        record = self._records.get(worker)
        if record is not None:
            record.task_id = None
        task = self.find(task_id)
        if task is None:
            return None
        if worker in task.assigned:
            task.assigned.remove(worker)
        if not task.assigned:
            task.idle_since = self._env.tick
        return task

    # -- Execution --

    def execute(self, worker: str, task: Task) -> TaskStatus:
        """Run one tick of *task* for *worker*.

        A task whose target no longer resolves is dropped quietly and
        reported as completed. Completed tasks release the worker and are
        removed once nobody is left on them; failed tasks release the
        worker but stay in the table for someone else.
        """
        if not self._env.resolve(task.target_id):
            self.remove(task.id)
            self._stats["expired"] += 1
            return TaskStatus.COMPLETED
        eid = self._env.worker(worker)
        if eid is None:
            self.unassign(worker)
            return TaskStatus.FAILED
        self.assign(worker, task)
        status = EXECUTORS[task.type](self._env, eid, task)
        if status is TaskStatus.COMPLETED:
            self._stats["completed"] += 1
            self.unassign(worker)
            if not task.assigned:
                self.remove(task.id)
        elif status is TaskStatus.FAILED:
            self._stats["failed"] += 1
            logger.warning(
                "task %s failed for %s: %s", task.id, worker,
                task.data.get("last_error", "unknown"),
            )
            self.unassign(worker)
        return status

    def note_idle(self, worker: str) -> None:
        """Record that *worker* found nothing to do this tick."""
        self._stats["idle"] += 1

    # -- Maintenance --

    def cleanup(self, site: str | None = None) -> list[str]:
        """Expire old, orphaned, unreachable and already-satisfied tasks.

        Also prunes assignees that no longer exist. Limited to *site*
        when given. Returns removed ids.
        Running it twice in a row removes nothing the second time.
        """
        tick = self._env.tick
        removed: list[str] = []
        for task in list(self._tasks.values()):
            if site is not None and task.site != site:
                continue
            for name in [n for n in task.assigned if self._env.worker(n) is None]:
                task.assigned.remove(name)
                self._forget(name, task.id)
            if not task.assigned and task.idle_since is None:
                task.idle_since = tick
            if (tick - task.created_at > self._config.max_age
                    or not self._env.resolve(task.target_id)
                    or satisfied(self._env, task)
                    or (task.idle_since is not None
                        and tick - task.idle_since > self._config.stale_after)):
                self.remove(task.id)
                removed.append(task.id)
        if removed:
            logger.debug("cleanup removed %d task(s)", len(removed))
        return removed

    # -- Persistence --

    def expire(self) -> list[str]:
        """Remove tasks past their max age or whose target is gone.

        Assignees are released through :meth:`remove`, so no worker record
        keeps pointing at a removed task. Returns removed ids.
        """
        tick = self._env.tick
        gone = [t.id for t in self._tasks.values()
                if tick - t.created_at > self._config.max_age
                or not self._env.resolve(t.target_id)]
        for task_id in gone:
            self.remove(task_id)
        return gone

    def save(self) -> list[dict[str, Any]]:
        """Expire dead and old tasks, then serialize the rest."""
        self.expire()
        return [t.to_dict() for t in self._tasks.values()]

    def load(self, data: list[dict[str, Any]]) -> None:
        self._tasks.clear()
        self._by_worker.clear()
        for raw in sorted(data, key=lambda d: d.get("seq", 0)):
            task = Task.from_dict(raw)
            kept = []
            for name in task.assigned:
                if name not in self._by_worker:
                    self._by_worker[name] = task.id
                    kept.append(name)
            task.assigned = kept
            self._tasks[task.id] = task
            self._seq = max(self._seq, task.seq)

    # -- Introspection --

    @property
    def stats(self) -> dict[str, int]:
        return {k: self._stats[k] for k in ("created", "completed", "failed", "expired", "idle")}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks
