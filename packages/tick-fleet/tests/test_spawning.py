"""Tests for the production queue: ordering, backpressure and retries."""

import random

from tick import World
from tick_fleet import events
from tick_fleet.components import Controller
from tick_fleet.config import SpawnConfig
from tick_fleet.environment import Environment
from tick_fleet.events import EventLog
from tick_fleet.memory import FleetMemory
from tick_fleet.spawning import ProductionQueue, ProductionRequest, worker_name
from tick_fleet.types import Part, Role

W, C, M = Part.WORK, Part.CARRY, Part.MOVE
HOME = "W1N1"
POOR = "W2N1"


def _setup(energy=300):
    env = Environment(World())
    env.add_controller(HOME, level=1, owner=env.username)
    env.add_spawn(HOME, "Spawn1", energy=energy)
    memory = FleetMemory()
    log = EventLog()
    queue = ProductionQueue(env, memory, SpawnConfig(), log)
    return env, memory, log, queue


def _request(role=Role.HARVESTER, priority=100, site=HOME, **kwargs):
    return ProductionRequest(role=role, body=[W, C, M], priority=priority, site=site, **kwargs)


# --- Ordering ---

def test_pending_in_priority_order():
    _, _, _, queue = _setup()
    queue.enqueue(_request(priority=10))
    queue.enqueue(_request(priority=200))
    queue.enqueue(_request(priority=99))
    assert [r.priority for r in queue.pending(HOME)] == [200, 99, 10]


def test_equal_priority_is_fifo():
    _, _, _, queue = _setup()
    first = queue.enqueue(_request(role=Role.BUILDER))
    second = queue.enqueue(_request(role=Role.UPGRADER))
    assert queue.pending(HOME) == [first, second]
    assert first.seq < second.seq


def test_submit_is_enqueue():
    _, _, _, queue = _setup()
    queue.submit(_request())
    assert len(queue) == 1


# --- Production ---

def test_head_request_produced():
    env, memory, log, queue = _setup()
    queue.enqueue(_request(memory={"target_site": "W3N3", "note": 1}))
    produced = queue.process_tick(random.Random(4))
    assert len(produced) == 1
    name = produced[0]
    assert name.startswith("harvester_")
    assert env.worker(name) is not None
    record = memory.worker(name)
    assert record.role == "harvester"
    assert record.home == HOME
    assert record.target_site == "W3N3"
    assert record.data == {"note": 1}
    assert len(queue) == 0
    assert log.total(events.SPAWNED) == 1


def test_busy_spawner_waits():
    env, _, _, queue = _setup(energy=300)
    queue.enqueue(_request())
    queue.enqueue(_request())
    assert len(queue.process_tick()) == 1
    assert queue.process_tick() == []
    assert len(queue) == 1


def test_fixed_name_is_used():
    env, _, _, queue = _setup()
    queue.enqueue(_request(name="keeper"))
    assert queue.process_tick() == ["keeper"]


def test_worker_name_format():
    name = worker_name(Role.SCOUT, 42, random.Random(0))
    role, tick, suffix = name.split("_")
    assert (role, tick) == ("scout", "42")
    assert 0 <= int(suffix) < 1000


# --- Retries ---

def test_structural_rejection_drops_after_limit_while_scarcity_waits():
    env, _, log, queue = _setup()
    env.add_worker("taken", HOME, [M])
    env.add_controller(POOR, level=1, owner=env.username)
    env.add_spawn(POOR, "Spawn2", energy=50)
    doomed = queue.enqueue(_request(name="taken"))
    starved = queue.enqueue(_request(site=POOR))

    for _ in range(4):
        queue.process_tick()
    assert doomed in queue.pending(HOME)
    assert doomed.retries == 4

    queue.process_tick()
    assert queue.pending(HOME) == []
    assert log.total(events.REQUEST_DROPPED) == 1
    assert log.last(events.REQUEST_DROPPED).data["reason"] == "name_exists"

    for _ in range(20):
        queue.process_tick()
    assert queue.pending(POOR) == [starved]
    assert starved.retries == 0


def test_retry_limit_is_configurable():
    env = Environment(World())
    env.add_controller(HOME, level=1, owner=env.username)
    env.add_spawn(HOME, "Spawn1")
    env.add_worker("taken", HOME, [M])
    queue = ProductionQueue(env, FleetMemory(), SpawnConfig(max_retries=1))
    queue.enqueue(_request(name="taken"))
    queue.process_tick()
    assert len(queue) == 0


def test_site_without_spawner_keeps_requests():
    _, _, _, queue = _setup()
    queue.enqueue(_request(site="W9N9"))
    for _ in range(10):
        queue.process_tick()
    assert queue.pending("W9N9")[0].retries == 0


def test_unowned_site_is_not_served():
    env, _, log, queue = _setup()
    ctrl, _ = env.controller(HOME)
    env.get(ctrl, Controller).owner = None
    queue.enqueue(_request())
    assert queue.process_tick() == []
    assert len(queue) == 1
    assert log.total(events.SPAWNED) == 0


def test_drop_site():
    _, _, _, queue = _setup()
    queue.enqueue(_request())
    queue.enqueue(_request())
    assert queue.drop_site(HOME) == 2
    assert len(queue) == 0


# --- Persistence ---

def test_save_and_load_keep_order_and_sequence():
    env, memory, _, queue = _setup()
    queue.enqueue(_request(priority=50))
    queue.enqueue(_request(priority=150, memory={"home": "W4N4"}))
    data = queue.save()

    restored = ProductionQueue(env, memory)
    restored.load(data)
    pending = restored.pending(HOME)
    assert [r.priority for r in pending] == [150, 50]
    assert pending[0].memory == {"home": "W4N4"}
    assert pending[0].body == [W, C, M]
    later = restored.enqueue(_request(priority=50))
    assert later.seq > max(r.seq for r in pending)
