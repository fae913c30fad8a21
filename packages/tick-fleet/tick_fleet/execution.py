"""Per-task-type execution routines.

Each routine checks the worker's terminal condition first, then performs
the task's primitive action and maps the host result to a
:class:`TaskStatus`. An out-of-range result issues a move order and keeps
the task in progress.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from tick_fleet.components import Controller, Hits, Store
from tick_fleet.types import ResultCode, TaskStatus, TaskType

if TYPE_CHECKING:
    from tick import EntityId
    from tick_fleet.environment import Environment
    from tick_fleet.tasks import Task

Action = Callable[["EntityId", "EntityId"], ResultCode]
Executor = Callable[["Environment", "EntityId", "Task"], TaskStatus]


def _perform(env: Environment, worker: EntityId, task: Task, action: Action,
             done: tuple[ResultCode, ...] = ()) -> TaskStatus:
    code = action(worker, task.target_id)
    if code in done:
        return TaskStatus.COMPLETED
    if code is ResultCode.OK:
        return TaskStatus.IN_PROGRESS
    if code is ResultCode.NOT_IN_RANGE:
        env.move_to(worker, task.target_id)
        return TaskStatus.IN_PROGRESS
    task.data["last_error"] = code.value
    return TaskStatus.FAILED


def _full(env: Environment, worker: EntityId) -> bool:
    store = env.get(worker, Store)
    return store is not None and store.capacity > 0 and store.full


def _empty(env: Environment, worker: EntityId) -> bool:
    store = env.get(worker, Store)
    return store is None or store.empty


def _harvest(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _full(env, worker):
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.harvest)


def _upgrade(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _empty(env, worker):
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.upgrade)


def _build(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _empty(env, worker):
        return TaskStatus.COMPLETED
    status = _perform(env, worker, task, env.build)
    if status is TaskStatus.IN_PROGRESS and not env.resolve(task.target_id):
        return TaskStatus.COMPLETED
    return status


def _repair(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _empty(env, worker):
        return TaskStatus.COMPLETED
    hits = env.get(task.target_id, Hits)
    if hits is not None and hits.hits >= hits.hits_max:
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.repair)


def _transfer(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _empty(env, worker):
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.transfer, done=(ResultCode.FULL,))


def _withdraw(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _full(env, worker):
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.withdraw,
                    done=(ResultCode.NOT_ENOUGH_RESOURCES,))


def _pickup(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    if _full(env, worker):
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.pickup, done=(ResultCode.OK,))


def _combat(action_name: str) -> Executor:
    def execute(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
        status = _perform(env, worker, task, getattr(env, action_name))
        if status is TaskStatus.IN_PROGRESS and not env.resolve(task.target_id):
            return TaskStatus.COMPLETED
        return status

    execute.__name__ = f"_{action_name}"
    return execute


def _heal(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    hits = env.get(task.target_id, Hits)
    if hits is not None and hits.hits >= hits.hits_max:
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.heal)


def _claim(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    return _perform(env, worker, task, env.claim, done=(ResultCode.OK,))


def _reserve(env: Environment, worker: EntityId, task: Task) -> TaskStatus:
    ctrl = env.get(task.target_id, Controller)
    goal = task.amount or 0
    if ctrl is not None and goal and ctrl.reservation >= goal:
        return TaskStatus.COMPLETED
    return _perform(env, worker, task, env.reserve)


EXECUTORS: dict[TaskType, Executor] = {
    TaskType.HARVEST: _harvest,
    TaskType.UPGRADE: _upgrade,
    TaskType.BUILD: _build,
    TaskType.REPAIR: _repair,
    TaskType.TRANSFER: _transfer,
    TaskType.WITHDRAW: _withdraw,
    TaskType.PICKUP: _pickup,
    TaskType.ATTACK: _combat("attack"),
    TaskType.RANGED_ATTACK: _combat("ranged_attack"),
    TaskType.DISMANTLE: _combat("dismantle"),
    TaskType.HEAL: _heal,
    TaskType.CLAIM: _claim,
    TaskType.RESERVE: _reserve,
}


# Tasks that spend the worker's load and tasks that fill it.
_SPENDING = frozenset({TaskType.UPGRADE, TaskType.BUILD, TaskType.REPAIR,
                       TaskType.TRANSFER})
_FILLING = frozenset({TaskType.WITHDRAW, TaskType.PICKUP})


def ready(env: Environment, worker: EntityId, task: Task) -> bool:
    """Whether *worker* is not already at the task's terminal condition.

    An empty worker is never offered a spending task and a full one never a
    filling task; otherwise the routine would complete on its first call.
    """
    if task.type in _SPENDING:
        return not _empty(env, worker)
    if task.type in _FILLING or task.type is TaskType.HARVEST:
        return not _full(env, worker)
    return True


def satisfied(env: Environment, task: Task) -> bool:
    """Whether the task's goal holds regardless of who works on it."""
    target = task.target_id
    if task.type is TaskType.TRANSFER:
        store = env.get(target, Store)
        return store is not None and store.full
    if task.type is TaskType.WITHDRAW:
        store = env.get(target, Store)
        return store is not None and store.empty
    if task.type in (TaskType.REPAIR, TaskType.HEAL):
        hits = env.get(target, Hits)
        return hits is not None and hits.hits >= hits.hits_max
    if task.type is TaskType.CLAIM:
        ctrl = env.get(target, Controller)
        return ctrl is not None and ctrl.owner == env.username
    if task.type is TaskType.RESERVE:
        ctrl = env.get(target, Controller)
        return (ctrl is not None and bool(task.amount)
                and ctrl.reservation >= task.amount)
    return False
