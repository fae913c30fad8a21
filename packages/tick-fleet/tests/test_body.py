"""Tests for equipment manifests and capability matching."""

import pytest

from tick_fleet.body import (
    MAX_PARTS, BodyContext, body_cost, build_body, can_perform, capabilities,
    defender_body, fit_to_budget, move_speed, urgent_manifest,
)
from tick_fleet.types import Part, Role, TaskType

W, C, M, A, K = Part.WORK, Part.CARRY, Part.MOVE, Part.ATTACK, Part.CLAIM


# --- Costs and capabilities ---

def test_body_cost_sums_part_costs():
    assert body_cost([W, C, M]) == 200
    assert body_cost([K, M]) == 650
    assert body_cost([]) == 0


def test_body_cost_accepts_stored_values():
    assert body_cost(["work", "carry", "move"]) == 200


def test_can_perform_requires_matching_part():
    assert can_perform([W, C, M], TaskType.HARVEST)
    assert can_perform([C, M], TaskType.TRANSFER)
    assert not can_perform([C, M], TaskType.HARVEST)
    assert not can_perform([W, M], TaskType.PICKUP)
    assert can_perform([K, M], TaskType.RESERVE)


def test_capabilities_of_general_purpose_body():
    caps = capabilities([W, C, M])
    assert TaskType.BUILD in caps
    assert TaskType.WITHDRAW in caps
    assert TaskType.ATTACK not in caps
    assert TaskType.CLAIM not in caps


def test_move_speed_compares_move_to_other_parts():
    assert move_speed([C, M]) == 1.0
    assert move_speed([C, C, C, M, M, M]) == 1.0
    assert move_speed([C, C, M]) == 0.5
    assert move_speed([M, M]) == 1.0
    assert move_speed([W, C]) == 0


# --- Budget fitting ---

def test_fit_to_budget_trims_from_the_tail():
    assert fit_to_budget([W, W, C, M], 250) == [W, W, C]


def test_fit_to_budget_falls_back_to_minimum():
    assert fit_to_budget([W, W, W, C, M], 300, [W, C, M]) == [W, C, M]


def test_fit_to_budget_unaffordable_minimum_is_empty():
    assert fit_to_budget([W, C, M], 150, [W, C, M]) == []


def test_fit_to_budget_caps_part_count():
    assert len(fit_to_budget([M] * 80, 10_000)) == MAX_PARTS


# --- Recipes ---

def test_early_harvester_uses_full_budget():
    assert build_body(Role.HARVESTER, 300) == [W, W, C, M]


def test_early_harvester_below_full_budget():
    assert build_body(Role.HARVESTER, 200) == [W, C, M]


def test_unaffordable_role_returns_empty():
    assert build_body(Role.HARVESTER, 150) == []
    assert build_body(Role.CLAIMER, 600) == []


def test_claimer_grows_move_with_budget():
    assert build_body(Role.CLAIMER, 650) == [K, M]
    assert build_body(Role.CLAIMER, 800) == [K, M, M, M]


def test_scout_is_capped_at_max_parts():
    assert build_body(Role.SCOUT, 100_000) == [M] * MAX_PARTS


@pytest.mark.parametrize("role", list(Role))
def test_every_recipe_respects_budget_and_part_ceiling(role):
    for level in (1, 3, 5, 8):
        for energy in (200, 300, 550, 800, 1300, 5600, 12_900):
            body = build_body(role, energy, BodyContext(level=level, storage=1000))
            assert body_cost(body) <= energy
            assert len(body) <= MAX_PARTS


# --- Urgent manifests ---

def test_urgent_manifests():
    assert urgent_manifest(Role.HARVESTER) == [W, C, M]
    assert urgent_manifest(Role.HAULER) == [C, C, M]
    assert urgent_manifest(Role.DEFENDER) is None


def test_urgent_context_overrides_recipe():
    ctx = BodyContext(level=5, urgent=True)
    assert build_body(Role.UPGRADER, 2000, ctx) == [W, C, M]
    assert build_body(Role.HAULER, 150, ctx) == [C, C, M]
    assert build_body(Role.UPGRADER, 150, ctx) == []


def test_defender_body_tiers():
    assert defender_body(130) == [M, A]
    assert A in defender_body(400)
    assert Part.HEAL in defender_body(800)
    assert body_cost(defender_body(800)) <= 800
