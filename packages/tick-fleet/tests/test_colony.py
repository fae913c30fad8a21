"""Tests for the colony coordinator: classification, balancing and expansion."""

from tick import World
from tick_fleet import events
from tick_fleet.colony import (
    ColonyCoordinator, ColonyState, ExpansionTarget, SiteObservation,
)
from tick_fleet.environment import Environment
from tick_fleet.events import EventLog
from tick_fleet.memory import FleetMemory, WorkerRecord
from tick_fleet.spawning import ProductionQueue, ProductionRequest
from tick_fleet.types import Role, StructureKind


class FixedScorer:
    def __init__(self, scores=None):
        self._scores = scores or {}

    def score(self, site):
        return self._scores.get(site, 0.0)


def _owned(env, site, level=6, stored=0, terminal=True):
    env.add_controller(site, level=level, owner=env.username)
    env.add_spawn(site, f"Spawn-{site}")
    if stored:
        env.add_structure(site, StructureKind.STORAGE, 22, 22, energy=stored)
    if terminal:
        env.add_structure(site, StructureKind.TERMINAL, 23, 23)


def _coordinator(env, state=None, scores=None, workers=None):
    memory = FleetMemory()
    log = EventLog()
    queue = ProductionQueue(env, memory)
    colony = ColonyCoordinator(env, queue, FixedScorer(scores),
                               workers if workers is not None else memory.workers,
                               state=state, event_log=log)
    return colony, queue, log


# --- Balancing ---

def test_balance_moves_surplus_to_deficit_once():
    env = Environment(World())
    _owned(env, "W1N1", stored=50_000)
    _owned(env, "W3N1", stored=5000)
    colony, _, log = _coordinator(env)

    run = colony.run(1)
    assert run.transfers == [("W1N1", "W3N1", 10_000)]
    assert env.stored_energy("W1N1") == 40_000
    assert env.stored_energy("W3N1") == 15_000
    assert log.total(events.TRANSFER) == 1
    # The source terminal is cooling down.
    assert colony.balance_resources(2) == []


def test_balance_single_site_does_nothing():
    env = Environment(World())
    _owned(env, "W1N1", stored=50_000)
    colony, _, _ = _coordinator(env)
    colony.classify(1)
    assert colony.balance_resources(1) == []
    assert colony.state.balances == {"W1N1": 50_000}


def test_balance_skips_small_differences():
    env = Environment(World())
    _owned(env, "W1N1", stored=3000)
    _owned(env, "W3N1", stored=500)
    colony, _, _ = _coordinator(env)
    colony.classify(1)
    # 2500 * 0.3 = 750 is under the minimum transfer.
    assert colony.balance_resources(1) == []


# --- Classification ---

def test_classify_reports_claimed_target():
    env = Environment(World())
    _owned(env, "W1N1", stored=30_000)
    _owned(env, "W2N1", level=1, terminal=False)
    state = ColonyState(owned=["W1N1"], targets=[ExpansionTarget("W2N1", 300.0, 0)])
    colony, _, log = _coordinator(env, state)
    colony.classify(10)
    assert colony.state.owned == ["W1N1", "W2N1"]
    assert colony.state.targets == []
    assert colony.state.stats["successes"] == 1
    assert log.last(events.SITE_CLAIMED).data["site"] == "W2N1"


def test_classify_records_loss_and_pauses_expansion():
    env = Environment(World())
    _owned(env, "W1N1", stored=30_000)
    colony, _, log = _coordinator(env, ColonyState(owned=["W1N1", "W5N5"]))
    colony.classify(100)
    assert colony.state.owned == ["W1N1"]
    assert log.total(events.SITE_LOST) == 1
    assert colony.expansion_paused(200) == "recent loss"
    assert colony.expansion_paused(100 + 10_000) is None


def test_lost_site_loses_its_production_queue():
    env = Environment(World())
    _owned(env, "W1N1")
    colony, queue, _ = _coordinator(env, ColonyState(owned=["W1N1", "W2N1"]))
    queue.enqueue(ProductionRequest(role=Role.BUILDER, body=[], priority=50, site="W2N1"))
    queue.enqueue(ProductionRequest(role=Role.BUILDER, body=[], priority=50, site="W1N1"))
    colony.classify(100)
    assert queue.pending("W2N1") == []
    assert len(queue.pending("W1N1")) == 1


def test_classify_tracks_reservations():
    env = Environment(World())
    _owned(env, "W1N1")
    env.add_controller("W2N1", reserved_by=env.username, reservation=3000)
    colony, _, _ = _coordinator(env, ColonyState(reserved=["W9N9"]))
    colony.classify(1)
    # W9N9 has no known controller yet and stays reserved.
    assert colony.state.reserved == ["W2N1", "W9N9"]


def test_classify_drops_reservation_taken_by_another():
    env = Environment(World())
    _owned(env, "W1N1")
    env.add_controller("W2N1", reserved_by="Rival", reservation=3000)
    colony, _, _ = _coordinator(env, ColonyState(reserved=["W2N1"]))
    colony.classify(1)
    assert colony.state.reserved == []


def test_classify_observes_visible_sites():
    env = Environment(World())
    _owned(env, "W1N1")
    env.add_controller("W2N1")
    env.add_source("W2N1", 10, 10)
    env.add_source("W2N1", 30, 30)
    env.add_controller("W4N4")
    env.observed.add("W2N1")
    colony, _, _ = _coordinator(env, scores={"W2N1": 200.0})
    colony.classify(7)
    obs = colony.state.observed["W2N1"]
    assert (obs.last_seen, obs.sources, obs.score) == (7, 2, 200.0)
    assert "W4N4" not in colony.state.observed


def test_reserve_and_remotes_for():
    env = Environment(World())
    colony, _, _ = _coordinator(env, ColonyState(owned=["W1N1", "W9N1"]))
    colony.reserve("W2N1")
    colony.reserve("W8N1")
    colony.reserve("W1N1")
    assert colony.state.reserved == ["W2N1", "W8N1"]
    assert colony.remotes_for("W1N1") == ["W2N1"]
    assert colony.remotes_for("W9N1") == ["W8N1"]


# --- Expansion ---

def test_pause_reasons():
    env = Environment(World())
    _owned(env, "W1N1", stored=5000)
    colony, _, _ = _coordinator(env)
    colony.classify(1)
    assert colony.expansion_paused(1) == "storage below floor"

    env.add_hostile("W1N1", 5, 5)
    colony.classify(2)
    assert colony.expansion_paused(2) == "under attack"
    assert colony.expansion_paused(1002) == "storage below floor"


def test_expansion_score():
    env = Environment(World())
    colony, _, _ = _coordinator(env, ColonyState(owned=["W1N1"]))
    obs = SiteObservation(last_seen=0, sources=2, score=200.0)
    # Base 200, +50 safe, +95 for being one site away.
    assert colony.expansion_score("W2N2", obs) == 345
    colony.state.observed["W2N1"] = SiteObservation(last_seen=0, owner="Rival")
    assert colony.expansion_score("W2N2", obs) == 245


def _expansion_ready(gcl=2):
    env = Environment(World(), gcl=gcl)
    _owned(env, "W1N1", level=4, stored=30_000)
    state = ColonyState(owned=["W1N1"], observed={
        "W2N2": SiteObservation(last_seen=90, sources=2, score=200.0),
        "W1N2": SiteObservation(last_seen=90, sources=1, score=100.0),
        "W13N16": SiteObservation(last_seen=90, sources=3, score=900.0),
        "W3N3": SiteObservation(last_seen=90, sources=2, owner="Rival", score=900.0),
        "W4N1": SiteObservation(last_seen=90, sources=0, score=0.0),
    })
    return env, state


def test_plan_expansion_ranks_eligible_candidates():
    env, state = _expansion_ready()
    colony, _, log = _coordinator(env, state)
    assert colony.plan_expansion(100) == ["W2N2", "W1N2"]
    assert colony.state.target_names() == ["W2N2", "W1N2"]
    assert log.total(events.EXPANSION_TARGET) == 2
    assert colony.plan_expansion(200) == []


def test_plan_expansion_needs_spare_capacity_and_mature_sites():
    env, state = _expansion_ready(gcl=1)
    colony, _, _ = _coordinator(env, state)
    assert colony.plan_expansion(100) == []

    env, state = _expansion_ready()
    env.controller("W1N1")[1].level = 3
    colony, _, _ = _coordinator(env, state)
    assert colony.plan_expansion(100) == []


def test_plan_expansion_ignores_stale_observations():
    env, state = _expansion_ready()
    colony, _, _ = _coordinator(env, state)
    assert colony.plan_expansion(90 + 5001) == []


def _claim_ready(extensions=8):
    env, state = _expansion_ready()
    for i in range(extensions):
        env.add_structure("W1N1", StructureKind.EXTENSION, 30 + i, 10, energy=50)
    state.targets = [ExpansionTarget("W2N2", 345.0, 100), ExpansionTarget("W1N2", 245.0, 100)]
    return env, state


def test_process_claiming_requests_one_claimer():
    env, state = _claim_ready()
    colony, queue, log = _coordinator(env, state)
    request = colony.process_claiming(200)
    assert request.role is Role.CLAIMER
    assert request.site == "W1N1"
    assert request.target_site == "W2N2"
    assert request.priority == 80
    assert queue.pending("W1N1") == [request]
    assert colony.state.targets[0].requested_at == 200
    assert colony.state.stats["attempts"] == 1
    assert log.total(events.CLAIM_REQUESTED) == 1

    assert colony.process_claiming(400) is None
    assert len(queue) == 1


def test_process_claiming_waits_for_live_claimer():
    env, state = _claim_ready()
    workers = {"claimer_1_1": WorkerRecord(role="claimer", home="W1N1")}
    colony, queue, _ = _coordinator(env, state, workers=workers)
    assert colony.process_claiming(200) is None
    assert len(queue) == 0


def test_process_claiming_needs_capacity_for_claim_part():
    env, state = _claim_ready(extensions=0)
    colony, queue, _ = _coordinator(env, state)
    assert colony.process_claiming(200) is None
    assert len(queue) == 0


def test_process_claiming_needs_rich_source():
    env, state = _claim_ready()
    env.storage("W1N1")[1].amount = 20_000
    colony, _, _ = _coordinator(env, state)
    assert colony.process_claiming(200) is None


def test_process_claiming_respects_worker_ceiling():
    env, state = _claim_ready()
    workers = {f"hauler_{i}": WorkerRecord(role="hauler", home="W1N1") for i in range(30)}
    colony, _, _ = _coordinator(env, state, workers=workers)
    assert colony.process_claiming(200) is None


# --- Upkeep and persistence ---

def test_cleanup_expires_records_and_failed_targets():
    env = Environment(World())
    state = ColonyState(
        observed={
            "W2N1": SiteObservation(last_seen=0),
            "W3N1": SiteObservation(last_seen=25_000, owner="Rival"),
        },
        targets=[ExpansionTarget("W3N1", 100.0, 24_000)],
    )
    colony, _, _ = _coordinator(env, state)
    colony.cleanup(25_000)
    assert list(colony.state.observed) == ["W3N1"]
    assert colony.state.targets == []
    assert colony.state.stats["failures"] == 1


def test_state_round_trip():
    state = ColonyState(
        owned=["W1N1"], reserved=["W2N1"],
        observed={"W3N3": SiteObservation(last_seen=5, sources=2, score=10.0)},
        targets=[ExpansionTarget("W3N3", 10.0, 5)],
        losses=[{"site": "W5N5", "tick": 3}], last_attack=4,
    )
    restored = ColonyState.from_dict(state.to_dict())
    assert restored == state
    assert ColonyState.from_dict(None) == ColonyState()
