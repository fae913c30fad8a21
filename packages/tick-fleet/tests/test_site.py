"""Tests for the site scheduler: task sourcing, emergencies and dispatch."""

from tick import World
from tick_fleet import events
from tick_fleet.behaviors import Behaviors
from tick_fleet.components import Hits
from tick_fleet.config import CpuConfig, FleetConfig
from tick_fleet.environment import Environment
from tick_fleet.events import EventLog
from tick_fleet.memory import FleetMemory, SiteRecord, WorkerRecord
from tick_fleet.planner import ProductionPlanner
from tick_fleet.profile import SiteProfile
from tick_fleet.results import StepFailed, StepOk
from tick_fleet.services import GridSiteMap
from tick_fleet.site import SiteScheduler, in_batch
from tick_fleet.spawning import ProductionQueue, ProductionRequest
from tick_fleet.tasks import TaskRegistry
from tick_fleet.types import Part, Role, StructureKind, TaskType

W, C, M = Part.WORK, Part.CARRY, Part.MOVE
SITE = "W1N1"


class FakeBehaviors:
    """Records dispatches; raises for the names it is told to."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.ran = []
        self.reset_names = []

    def run(self, name):
        self.ran.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} broke")
        return "fine"

    def reset(self, name):
        self.reset_names.append(name)


def _scheduler(env, behaviors=None, config=None):
    config = config or FleetConfig()
    memory = FleetMemory()
    log = EventLog()
    registry = TaskRegistry(env, config.tasks, memory.workers)
    queue = ProductionQueue(env, memory, config.spawn, log)
    planner = ProductionPlanner(GridSiteMap(env), config.planner)
    if behaviors is None:
        behaviors = Behaviors(env, registry, memory)
    scheduler = SiteScheduler(env, memory, registry, planner, queue, behaviors,
                              config, log)
    return scheduler, memory, registry, queue, log


def _owned_site(energy=300):
    env = Environment(World())
    env.add_controller(SITE, level=1, owner=env.username)
    env.add_spawn(SITE, "Spawn1", energy=energy)
    env.add_source(SITE, 10, 10)
    env.add_source(SITE, 40, 40)
    return env


# --- Task sourcing ---

def test_source_tasks_is_idempotent():
    env = _owned_site(energy=100)
    scheduler, _, registry, _, _ = _scheduler(env)
    profile = scheduler.refresh(SITE)
    created = scheduler.source_tasks(profile, tick=1)
    types = sorted(registry.get(t).type.value for t in created)
    assert types == ["harvest", "harvest", "transfer", "upgrade"]
    assert scheduler.source_tasks(profile, tick=2) == []
    assert len(registry) == 4


def test_source_tasks_priorities():
    env = _owned_site()
    env.add_structure(SITE, StructureKind.RAMPART, 5, 5, hits=100)
    env.add_structure(SITE, StructureKind.ROAD, 6, 6, hits=1000)
    env.add_construction_site(SITE, StructureKind.EXTENSION, 7, 7)
    env.add_dropped(SITE, 8, 8, 200)
    env.add_dropped(SITE, 9, 9, 50)
    scheduler, _, registry, _, _ = _scheduler(env)
    scheduler.source_tasks(scheduler.refresh(SITE), tick=1)
    by_type = {}
    for task in registry.tasks(SITE):
        by_type.setdefault(task.type, []).append(task.priority)
    assert sorted(by_type[TaskType.REPAIR]) == [40, 90]
    assert by_type[TaskType.BUILD] == [50]
    assert by_type[TaskType.PICKUP] == [10]
    assert by_type[TaskType.HARVEST] == [70, 70]


def test_source_tasks_for_hostiles_and_injured_workers():
    env = _owned_site()
    env.add_hostile(SITE, 30, 30)
    eid = env.add_worker("defender_1_1", SITE, [Part.ATTACK, M])
    env.get(eid, Hits).hits = 50
    scheduler, _, registry, _, _ = _scheduler(env)
    scheduler.source_tasks(scheduler.refresh(SITE), tick=1)
    types = {t.type for t in registry.tasks(SITE)}
    assert {TaskType.ATTACK, TaskType.RANGED_ATTACK, TaskType.HEAL} <= types


def test_remote_sites_are_scanned_on_cadence():
    env = _owned_site()
    env.add_controller("W2N1")
    env.add_source("W2N1", 10, 10)
    env.add_structure("W2N1", StructureKind.CONTAINER, 11, 11, energy=500)
    env.observed.add("W2N1")
    scheduler, _, registry, _, _ = _scheduler(env)
    profile = scheduler.refresh(SITE, ["W2N1"])

    scheduler.source_tasks(profile, tick=21, remotes=["W2N1"])
    assert registry.tasks("W2N1") == []

    scheduler.source_tasks(profile, tick=40, remotes=["W2N1"])
    remote = {t.type: t for t in registry.tasks("W2N1")}
    assert set(remote) == {TaskType.HARVEST, TaskType.RESERVE, TaskType.WITHDRAW}
    assert remote[TaskType.RESERVE].amount == 4000
    # Home storage is empty, so remote stock is urgent.
    assert remote[TaskType.WITHDRAW].priority == 120


def test_invisible_remote_gets_no_tasks():
    env = _owned_site()
    env.add_controller("W2N1")
    env.add_source("W2N1", 10, 10)
    scheduler, _, registry, _, _ = _scheduler(env)
    scheduler.source_tasks(scheduler.refresh(SITE), tick=40, remotes=["W2N1"])
    assert registry.tasks("W2N1") == []


def test_claim_task_for_visible_target():
    env = _owned_site()
    env.add_controller("W3N1")
    env.observed.add("W3N1")
    scheduler, _, registry, _, _ = _scheduler(env)
    scheduler.source_tasks(scheduler.refresh(SITE), tick=40, targets=["W3N1"])
    [task] = registry.tasks("W3N1")
    assert (task.type, task.priority) == (TaskType.CLAIM, 80)


# --- Emergencies ---

def test_emergency_notifies_once_per_interval():
    env = Environment(World())
    scheduler, _, _, _, log = _scheduler(env)
    record = SiteRecord()
    profile = SiteProfile(site=SITE, hostiles=3)
    assert scheduler.update_emergency(profile, record, 10)
    assert scheduler.update_emergency(profile, record, 60)
    assert log.total(events.EMERGENCY) == 1
    assert scheduler.update_emergency(profile, record, 110)
    assert log.total(events.EMERGENCY) == 2
    assert profile.emergency and record.emergency


def test_emergency_triggers():
    env = Environment(World())
    scheduler, _, _, _, _ = _scheduler(env)
    assert not scheduler.update_emergency(SiteProfile(site=SITE, hostiles=2), SiteRecord(), 1)
    assert scheduler.update_emergency(SiteProfile(site=SITE, hostiles=1, boosted=1),
                                      SiteRecord(), 1)
    assert scheduler.update_emergency(SiteProfile(site=SITE, weakest_rampart=500),
                                      SiteRecord(), 1)


def test_emergency_holds_while_any_hostile_remains():
    env = Environment(World())
    scheduler, _, _, _, _ = _scheduler(env)
    record = SiteRecord()
    scheduler.update_emergency(SiteProfile(site=SITE, hostiles=3), record, 1)
    assert scheduler.update_emergency(SiteProfile(site=SITE, hostiles=1), record, 2)
    assert not scheduler.update_emergency(SiteProfile(site=SITE), record, 3)
    assert not record.emergency


# --- Dispatch ---

def test_dispatch_isolates_failing_worker():
    env = Environment(World())
    fake = FakeBehaviors(failing={"bad"})
    scheduler, _, _, _, log = _scheduler(env, behaviors=fake)
    results = scheduler.dispatch(["good", "bad", "after"])
    assert fake.ran == ["good", "bad", "after"]
    assert [type(r) for r in results] == [StepOk, StepFailed, StepOk]
    assert results[0].detail == "fine"
    assert isinstance(results[1].error, RuntimeError)
    assert fake.reset_names == ["bad"]
    event = log.last(events.WORKER_RESET)
    assert event.data == {"name": "bad", "error": "RuntimeError"}


def test_in_batch_uses_name_digits():
    assert in_batch("harvester_12_4", tick=1, batches=3)
    assert not in_batch("harvester_12_4", tick=2, batches=3)
    assert in_batch("scout", tick=3, batches=3)


# --- Turns ---

def test_run_sources_plans_and_dispatches():
    env = _owned_site()
    env.add_worker("harvester_1_1", SITE, [W, C, M], x=11, y=10)
    scheduler, memory, registry, queue, _ = _scheduler(env)
    memory.remember("harvester_1_1", WorkerRecord(role="harvester", home=SITE))

    run = scheduler.run(SITE, tick=1)
    assert {registry.get(t).type for t in run.created} == {TaskType.HARVEST, TaskType.UPGRADE}
    assert run.requests
    assert len(queue.pending(SITE)) == len(run.requests)
    assert [r.subject for r in run.results] == ["harvester_1_1"]
    assert isinstance(run.results[0], StepOk)
    assert memory.site(SITE).level == 1
    assert memory.site(SITE).role_counts == {"harvester": 1}
    assert "1 workers (0 failed)" in run.summary()


def test_second_run_counts_queued_requests():
    env = _owned_site()
    scheduler, _, _, queue, _ = _scheduler(env)
    first = scheduler.run(SITE, tick=1)
    second = scheduler.run(SITE, tick=2)
    assert all(r.role is not Role.HARVESTER for r in second.requests)
    assert len(queue) == len(first.requests) + len(second.requests)


def test_queued_request_counts_toward_its_home_site():
    env = _owned_site()
    scheduler, _, _, queue, _ = _scheduler(env)
    queue.enqueue(ProductionRequest(role=Role.HAULER, body=[C, M], priority=150,
                                    site=SITE, memory={"home": "W2N1"}))
    assert scheduler.refresh(SITE).queued["hauler"] == 0
    assert scheduler.refresh("W2N1").queued["hauler"] == 1


def test_run_reduced_dispatches_one_batch():
    env = _owned_site()
    fake = FakeBehaviors()
    scheduler, memory, registry, queue, _ = _scheduler(
        env, behaviors=fake, config=FleetConfig(cpu=CpuConfig(batches=2)))
    for name in ("hauler_1", "hauler_2", "hauler_3"):
        env.add_worker(name, SITE, [C, M])
        memory.remember(name, WorkerRecord(role="hauler", home=SITE))
    run = scheduler.run_reduced(SITE, tick=4)
    assert fake.ran == ["hauler_2"]
    assert run.created == [] and run.requests == []
    assert len(registry) == 0 and len(queue) == 0
