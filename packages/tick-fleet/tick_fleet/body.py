"""Equipment manifests: part costs, capability matching and per-role recipes.

A manifest is an ordered list of :class:`Part` values. Recipes pick a shape
from the site's progression level and the energy budget, and every
generated manifest is trimmed until its cost fits the budget it was built
for. When not even the role's minimal manifest fits, generation returns an
empty list and the caller treats the role as unaffordable this tick.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from tick_fleet.types import Part, Role, TaskType

MAX_PARTS = 50

PART_COST: dict[Part, int] = {
    Part.MOVE: 50,
    Part.WORK: 100,
    Part.CARRY: 50,
    Part.ATTACK: 80,
    Part.RANGED_ATTACK: 150,
    Part.HEAL: 250,
    Part.CLAIM: 600,
    Part.TOUGH: 10,
}

# Capability required to take each task type.
TASK_CAPABILITY: dict[TaskType, Part] = {
    TaskType.HARVEST: Part.WORK,
    TaskType.UPGRADE: Part.WORK,
    TaskType.BUILD: Part.WORK,
    TaskType.REPAIR: Part.WORK,
    TaskType.DISMANTLE: Part.WORK,
    TaskType.TRANSFER: Part.CARRY,
    TaskType.WITHDRAW: Part.CARRY,
    TaskType.PICKUP: Part.CARRY,
    TaskType.ATTACK: Part.ATTACK,
    TaskType.HEAL: Part.HEAL,
    TaskType.RANGED_ATTACK: Part.RANGED_ATTACK,
    TaskType.CLAIM: Part.CLAIM,
    TaskType.RESERVE: Part.CLAIM,
}

W, C, M = Part.WORK, Part.CARRY, Part.MOVE
A, H, T, K = Part.ATTACK, Part.HEAL, Part.TOUGH, Part.CLAIM

URGENT_MANIFEST: list[Part] = [W, C, M]
URGENT_HAULER_MANIFEST: list[Part] = [C, C, M]


def body_cost(parts: Iterable[Part | str]) -> int:
    return sum(PART_COST[Part(p)] for p in parts)


def count_parts(parts: Iterable[Part | str], kind: Part) -> int:
    return sum(1 for p in parts if Part(p) is kind)


def move_speed(parts: Sequence[Part | str]) -> float:
    """Tiles per tick over plain ground: MOVE parts over the parts they carry, capped at 1."""
    moves = count_parts(parts, Part.MOVE)
    others = len(parts) - moves
    if others == 0:
        return 1.0 if moves else 0.0
    return min(1.0, moves / others)


def can_perform(parts: Iterable[Part | str], task_type: TaskType) -> bool:
    """True when the manifest grants the capability *task_type* requires."""
    needed = TASK_CAPABILITY[task_type]
    return any(Part(p) is needed for p in parts)


def capabilities(parts: Iterable[Part | str]) -> frozenset[TaskType]:
    kinds = {Part(p) for p in parts}
    return frozenset(t for t, part in TASK_CAPABILITY.items() if part in kinds)


def fit_to_budget(parts: Sequence[Part], budget: int,
                  minimum: Sequence[Part] = ()) -> list[Part]:
    """Drop trailing parts until the manifest costs at most *budget*.

    Never trims below *minimum*; returns ``[]`` when even that is
    unaffordable or the manifest is empty.
    """
    body = list(parts)[:MAX_PARTS]
    floor = len(minimum)
    while body and body_cost(body) > budget and len(body) > floor:
        body.pop()
    if body and body_cost(body) <= budget and set(minimum) <= set(body):
        return body
    if minimum and body_cost(minimum) <= budget:
        return list(minimum)
    return []


@dataclass(frozen=True)
class BodyContext:
    """Site facts a recipe may consult besides the energy budget."""

    level: int = 1
    storage: int = 0
    construction_sites: int = 0
    downgrade: int = 100_000
    urgent: bool = False


# --- Recipes ---


def _harvester(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 2:
        return [W, W, C, M] if energy >= 300 else [W, C, M]
    if ctx.level <= 4:
        if ctx.storage > 0:
            if energy >= 550:
                return [W, W, W, W, C, M, M]
            if energy >= 400:
                return [W, W, W, C, M]
            return [W, W, C, M]
        if energy >= 550:
            return [W, W, W, C, C, M, M, M]
        if energy >= 400:
            return [W, W, C, C, M, M]
        return [W, W, C, M]
    work = max(1, min(5, (energy - 100) // 100))
    extra_carry = max(0, min(2, (energy - work * 100 - 100) // 50))
    return [W] * work + [C, M] + [C] * extra_carry


def _upgrader(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 2 or ctx.downgrade < 3000:
        return [W, W, C, M] if energy >= 300 else [W, C, M]
    if ctx.level <= 4:
        if energy >= 800:
            return [W] * 5 + [C] * 3 + [M] * 3
        if energy >= 550:
            return [W, W, W, C, C, M, M]
        return [W, W, C, M]
    if ctx.level <= 7:
        work = max(1, min(15, (energy - 100) // 100))
        pairs = max(1, (energy - work * 100) // 100)
        body = [W] * work
        for _ in range(pairs):
            body += [C, M]
        return body
    work = max(1, min(15, (energy - 150) // 100))
    return [W] * work + [C, M, M]


def _builder(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 2:
        return [W, W, C, C, M, M] if energy >= 400 else [W, C, M]
    max_parts = min(MAX_PARTS, ctx.level * 5)
    sets = max(1, min(energy // 200, max_parts // 3))
    return [W, C, M] * sets


def _hauler(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 2:
        return [C, C, C, M, M, M] if energy >= 300 else [C, C, M, M]
    max_parts = min(MAX_PARTS, ctx.level * 6)
    pairs = max(1, min(energy // 100, max_parts // 2))
    return [C, M] * pairs


def _remote_harvester(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 3:
        if energy >= 500:
            return [W, W, C, C, M, M, M, M]
        if energy >= 300:
            return [W, C, C, M, M, M]
        return [W, C, M, M]
    work = max(1, min(6, energy // 250))
    carry = min(work, 3)
    return [W] * work + [C] * carry + [M] * (work + carry)


def _repairer(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 2:
        return [W, W, C, C, M, M] if energy >= 400 else [W, C, M]
    sets = max(1, energy // 200)
    work = min(-(-sets * 45 // 100), 10)
    carry = min(-(-sets * 25 // 100), 6)
    move = min(-(-sets * 30 // 100), 8)
    return [W] * work + [C] * carry + [M] * move


def _defender(energy: int, ctx: BodyContext) -> list[Part]:
    if ctx.level <= 3:
        return [T, A, A, M, M] if energy >= 390 else [A, M]
    if ctx.level <= 5:
        if energy >= 740:
            return [T, T, A, A, A, A, M, M, M, M]
        if energy >= 490:
            return [T, A, A, A, M, M, M]
        return [A, A, M, M]
    tough = min(6, energy // 100)
    attack = min(15, energy // 160)
    heal = min(5, energy // 1250)
    # Pair each part with a MOVE so trimming from the tail keeps the ratio.
    body: list[Part] = []
    for kind, n in ((T, tough), (A, attack), (H, heal)):
        for _ in range(n):
            body += [kind, M]
    return body


def _claimer(energy: int, ctx: BodyContext) -> list[Part]:
    if energy >= 750:
        return [K, M, M, M]
    if energy >= 700:
        return [K, M, M]
    return [K, M]


def _reserver(energy: int, ctx: BodyContext) -> list[Part]:
    return [K, K, M, M] if energy >= 1300 else [K, M]


def _scout(energy: int, ctx: BodyContext) -> list[Part]:
    return [M] * max(1, min(MAX_PARTS, energy // 50))


def _destroyer(energy: int, ctx: BodyContext) -> list[Part]:
    sets = max(1, min(energy // 150, MAX_PARTS // 2))
    return [W, M] * sets


Recipe = Callable[[int, BodyContext], list[Part]]

RECIPES: dict[Role, Recipe] = {
    Role.HARVESTER: _harvester,
    Role.UPGRADER: _upgrader,
    Role.BUILDER: _builder,
    Role.HAULER: _hauler,
    Role.REMOTE_HARVESTER: _remote_harvester,
    Role.REPAIRER: _repairer,
    Role.DEFENDER: _defender,
    Role.CLAIMER: _claimer,
    Role.RESERVER: _reserver,
    Role.SCOUT: _scout,
    Role.DESTROYER: _destroyer,
}

MINIMUM: dict[Role, list[Part]] = {
    Role.HARVESTER: [W, C, M],
    Role.UPGRADER: [W, C, M],
    Role.BUILDER: [W, C, M],
    Role.HAULER: [C, M],
    Role.REMOTE_HARVESTER: [W, C, M],
    Role.REPAIRER: [W, C, M],
    Role.DEFENDER: [A, M],
    Role.CLAIMER: [K, M],
    Role.RESERVER: [K, M],
    Role.SCOUT: [M],
    Role.DESTROYER: [W, M],
}


def urgent_manifest(role: Role) -> list[Part] | None:
    """Minimal manifest used while a site is recovering, or None if the role has none."""
    if role is Role.HAULER:
        return list(URGENT_HAULER_MANIFEST)
    if role in (Role.HARVESTER, Role.UPGRADER, Role.BUILDER, Role.REMOTE_HARVESTER):
        return list(URGENT_MANIFEST)
    return None


def build_body(role: Role, energy: int, ctx: BodyContext | None = None) -> list[Part]:
    """Return the best manifest for *role* costing at most *energy*.

    Returns ``[]`` when the role's minimal manifest is unaffordable.
    """
    ctx = ctx or BodyContext()
    if ctx.urgent:
        urgent = urgent_manifest(role)
        if urgent is not None:
            return urgent if body_cost(urgent) <= energy else []
    parts = RECIPES[role](energy, ctx)
    return fit_to_budget(parts, energy, MINIMUM[role])


def defender_body(energy: int) -> list[Part]:
    """Energy-tiered emergency defender, independent of site level."""
    if energy >= 550:
        return fit_to_budget([T, T, M, M, A, A, A, H], energy, [A, M])
    if energy >= 390:
        return fit_to_budget([T, M, A, A, H], energy, [A, M])
    return fit_to_budget([M, A], energy, [A, M])
