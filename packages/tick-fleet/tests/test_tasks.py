"""Tests for the task registry: matching, execution, cleanup and persistence."""

import pytest

from tick import World
from tick_fleet.components import Store
from tick_fleet.environment import Environment
from tick_fleet.memory import FleetMemory, WorkerRecord
from tick_fleet.tasks import TaskRegistry
from tick_fleet.types import Part, StructureKind, TaskStatus, TaskType, UnknownTaskError

W, C, M = Part.WORK, Part.CARRY, Part.MOVE
SITE = "W1N1"


def _setup():
    env = Environment(World())
    memory = FleetMemory()
    registry = TaskRegistry(env, records=memory.workers)
    return env, memory, registry


def _worker(env, memory, name, parts=(W, C, M), x=11, y=10, energy=0, role="harvester"):
    eid = env.add_worker(name, SITE, list(parts), x=x, y=y, energy=energy)
    memory.remember(name, WorkerRecord(role=role, home=SITE))
    return eid


# --- Creation ---

def test_create_assigns_sequential_ids():
    env, _, registry = _setup()
    source = env.add_source(SITE, 10, 10)
    first = registry.create(TaskType.HARVEST, source, 70, SITE)
    second = registry.create(TaskType.HARVEST, source, 70, SITE)
    assert first == "harvest_0_1"
    assert second == "harvest_0_2"
    assert len(registry) == 2
    assert first in registry


def test_get_unknown_task_raises():
    _, _, registry = _setup()
    with pytest.raises(UnknownTaskError):
        registry.get("harvest_0_99")
    with pytest.raises(KeyError):
        registry.get("harvest_0_99")


def test_existing_finds_live_task_by_target_and_type():
    env, _, registry = _setup()
    source = env.add_source(SITE, 10, 10)
    tid = registry.create(TaskType.HARVEST, source, 70, SITE)
    assert registry.existing(source, TaskType.HARVEST).id == tid
    assert registry.existing(source, TaskType.BUILD) is None


# --- Matching ---

def test_find_best_task_prefers_priority():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    low = env.add_source(SITE, 10, 10)
    high = env.add_source(SITE, 12, 10)
    registry.create(TaskType.HARVEST, low, 10, SITE)
    best = registry.create(TaskType.HARVEST, high, 70, SITE)
    assert registry.find_best_task("h1").id == best


def test_find_best_task_tie_goes_to_oldest_and_is_stable():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    first = registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    registry.create(TaskType.HARVEST, env.add_source(SITE, 12, 10), 70, SITE)
    picks = {registry.find_best_task("h1").id for _ in range(5)}
    assert picks == {first}


def test_find_best_task_respects_capability():
    env, memory, registry = _setup()
    _worker(env, memory, "c1", parts=(C, M))
    registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    assert registry.find_best_task("c1") is None


def test_find_best_task_only_in_worker_site():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    registry.create(TaskType.HARVEST, env.add_source("W2N1", 10, 10), 70, "W2N1")
    assert registry.find_best_task("h1") is None


def test_find_best_task_type_filter():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    assert registry.find_best_task("h1", {TaskType.UPGRADE}) is None


def test_empty_worker_is_not_offered_a_delivery():
    env, memory, registry = _setup()
    _worker(env, memory, "h1", energy=0)
    spawn = env.add_spawn(SITE, "Spawn1", energy=0)
    registry.create(TaskType.TRANSFER, spawn, 100, SITE)
    assert registry.find_best_task("h1") is None


def test_full_worker_is_offered_delivery_not_harvest():
    env, memory, registry = _setup()
    _worker(env, memory, "h1", energy=50)
    spawn = env.add_spawn(SITE, "Spawn1", energy=0)
    registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    deliver = registry.create(TaskType.TRANSFER, spawn, 100, SITE)
    assert registry.find_best_task("h1").id == deliver
    assert registry.find_best_task("h1", {TaskType.HARVEST}) is None


def test_unknown_worker_matches_nothing():
    env, _, registry = _setup()
    registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    assert registry.find_best_task("ghost") is None


# --- Assignment ---

def test_worker_holds_at_most_one_task():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    a = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    b = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 12, 10), 70, SITE))
    registry.assign("h1", a)
    registry.assign("h1", b)
    assert a.assigned == []
    assert b.assigned == ["h1"]
    assert registry.task_of("h1") is b
    assert memory.worker("h1").task_id == b.id


def test_unassign_marks_task_idle():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    env.tick = 7
    task = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    registry.assign("h1", task)
    assert task.idle_since is None
    env.tick = 9
    registry.unassign("h1")
    assert task.idle_since == 9
    assert memory.worker("h1").task_id is None
    assert task.id in registry


# --- Execution ---

def test_execute_in_progress_then_completed():
    env, memory, registry = _setup()
    eid = _worker(env, memory, "h1")
    task = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    assert registry.execute("h1", task) is TaskStatus.IN_PROGRESS
    assert env.get(eid, Store).amount == 2
    assert registry.task_of("h1") is task
    env.get(eid, Store).amount = 50
    assert registry.execute("h1", task) is TaskStatus.COMPLETED
    assert task.id not in registry
    assert memory.worker("h1").task_id is None
    assert registry.stats["completed"] == 1


def test_execute_out_of_range_moves_worker():
    env, memory, registry = _setup()
    eid = _worker(env, memory, "h1", x=20, y=20)
    task = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    assert registry.execute("h1", task) is TaskStatus.IN_PROGRESS
    pos = env.position(eid)
    assert (pos.x, pos.y) == (19, 19)


def test_execute_vanished_target_drops_task_quietly():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    source = env.add_source(SITE, 10, 10)
    task = registry.get(registry.create(TaskType.HARVEST, source, 70, SITE))
    env.remove(source)
    assert registry.execute("h1", task) is TaskStatus.COMPLETED
    assert len(registry) == 0
    assert registry.stats["expired"] == 1


def test_execute_failure_keeps_task_for_others():
    env, memory, registry = _setup()
    _worker(env, memory, "u1", energy=10)
    ctrl = env.add_controller(SITE, owner=None)
    task = registry.get(registry.create(TaskType.UPGRADE, ctrl, 30, SITE))
    assert registry.execute("u1", task) is TaskStatus.FAILED
    assert task.id in registry
    assert task.assigned == []
    assert task.data["last_error"] == "not_owner"
    assert registry.stats["failed"] == 1


# --- Cleanup ---

def test_cleanup_drops_task_whose_target_vanished():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    source = env.add_source(SITE, 10, 10)
    tid = registry.create(TaskType.HARVEST, source, 70, SITE)
    registry.assign("h1", registry.find_best_task("h1"))
    assert memory.worker("h1").task_id == tid
    env.remove(source)
    assert registry.cleanup() == [tid]
    assert all(t.target_id != source for t in registry.tasks())
    assert registry.task_of("h1") is None
    assert memory.worker("h1").task_id is None


def test_cleanup_expires_old_tasks_and_is_idempotent():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    task = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    registry.assign("h1", task)
    env.tick = 301
    assert registry.cleanup() == [task.id]
    assert registry.cleanup() == []


def test_cleanup_expires_unworked_tasks():
    env, _, registry = _setup()
    tid = registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE)
    env.tick = 50
    assert registry.cleanup() == []
    env.tick = 51
    assert registry.cleanup() == [tid]


def test_cleanup_drops_satisfied_delivery():
    env, _, registry = _setup()
    spawn = env.add_spawn(SITE, "Spawn1", energy=300)
    tid = registry.create(TaskType.TRANSFER, spawn, 100, SITE)
    assert registry.cleanup() == [tid]


def test_cleanup_prunes_dead_assignees():
    env, memory, registry = _setup()
    eid = _worker(env, memory, "h1")
    task = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    registry.assign("h1", task)
    env.remove(eid)
    env.tick = 3
    assert registry.cleanup() == []
    assert task.assigned == []
    assert task.idle_since == 3
    assert memory.worker("h1").task_id is None


def test_cleanup_limited_to_site():
    env, _, registry = _setup()
    here = env.add_source(SITE, 10, 10)
    there = env.add_source("W2N1", 10, 10)
    registry.create(TaskType.HARVEST, here, 70, SITE)
    registry.create(TaskType.HARVEST, there, 70, "W2N1")
    env.remove(here)
    env.remove(there)
    assert len(registry.cleanup(SITE)) == 1
    assert [t.site for t in registry.tasks()] == ["W2N1"]


# --- Persistence ---

def test_save_skips_dead_targets_and_load_restores():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    gone = env.add_source(SITE, 12, 10)
    kept = registry.get(registry.create(TaskType.HARVEST, env.add_source(SITE, 10, 10), 70, SITE))
    registry.create(TaskType.HARVEST, gone, 70, SITE)
    registry.assign("h1", kept)
    env.remove(gone)
    data = registry.save()
    assert [d["id"] for d in data] == [kept.id]

    restored = TaskRegistry(env, records=memory.workers)
    restored.load(data)
    assert restored.task_of("h1").id == kept.id
    new_id = restored.create(TaskType.BUILD, env.add_construction_site(
        SITE, StructureKind.ROAD, 5, 5), 50, SITE)
    assert restored.get(new_id).seq > kept.seq


def test_shared_stats_outlive_registry():
    env, _, first = _setup()
    source = env.add_source(SITE, 10, 10)
    first.create(TaskType.HARVEST, source, 70, SITE)
    second = TaskRegistry(env, stats=first._stats)
    second.create(TaskType.HARVEST, source, 70, SITE)
    assert second.stats["created"] == 2


def test_save_releases_workers_of_expired_tasks():
    env, memory, registry = _setup()
    _worker(env, memory, "h1")
    drop = env.add_dropped(SITE, 12, 12, 200)
    task = registry.get(registry.create(TaskType.PICKUP, drop, 10, SITE))
    registry.assign("h1", task)
    assert memory.worker("h1").task_id == task.id
    env.remove(drop)
    assert registry.save() == []
    assert memory.worker("h1").task_id is None
    assert registry.task_of("h1") is None
