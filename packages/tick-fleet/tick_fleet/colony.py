"""ColonyCoordinator - cross-site balancing and expansion.

Every tick the coordinator reclassifies sites into owned, reserved and
observed, and moves stored energy from sites well above the mean to sites
well below it. On slower cadences it picks expansion targets and requests
claim workers through a narrow production sink.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from tick_fleet import events
from tick_fleet.body import build_body
from tick_fleet.config import ColonyConfig
from tick_fleet.sites import closest, is_highway, is_source_keeper, neighbors, site_distance
from tick_fleet.spawning import ProductionRequest
from tick_fleet.types import ResultCode, Role

if TYPE_CHECKING:
    from tick_fleet.environment import Environment
    from tick_fleet.events import EventLog
    from tick_fleet.memory import WorkerRecord
    from tick_fleet.services import ScoringService
    from tick_fleet.spawning import ProductionSink

logger = logging.getLogger(__name__)

CLAIM_PRIORITY = 80
LOSS_HISTORY = 20


@dataclass
class SiteObservation:
    """What was last seen of a site.

    Attributes:
        last_seen: Tick of the last observation.
        sources: Resource node count.
        owner: Controller owner, None when neutral.
        reserved_by: Controller reservation holder.
        hostiles: Hostile units present when last seen.
        score: Base suitability from the scoring service.
    """

    last_seen: int
    sources: int = 0
    owner: str | None = None
    reserved_by: str | None = None
    hostiles: int = 0
    score: float = 0.0


@dataclass
class ExpansionTarget:
    site: str
    score: float
    added_at: int
    requested_at: int | None = None


@dataclass
class ColonyState:
    """Persisted colony-wide state."""

    owned: list[str] = field(default_factory=list)
    reserved: list[str] = field(default_factory=list)
    observed: dict[str, SiteObservation] = field(default_factory=dict)
    balances: dict[str, int] = field(default_factory=dict)
    targets: list[ExpansionTarget] = field(default_factory=list)
    losses: list[dict[str, Any]] = field(default_factory=list)
    last_attack: int | None = None
    stats: dict[str, int] = field(
        default_factory=lambda: {"attempts": 0, "successes": 0, "failures": 0}
    )

    def target_names(self) -> list[str]:
        return [t.site for t in self.targets]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ColonyState:
        if not data:
            return cls()
        state = cls(
            owned=list(data.get("owned", [])),
            reserved=list(data.get("reserved", [])),
            observed={s: SiteObservation(**o) for s, o in data.get("observed", {}).items()},
            balances=dict(data.get("balances", {})),
            targets=[ExpansionTarget(**t) for t in data.get("targets", [])],
            losses=list(data.get("losses", [])),
            last_attack=data.get("last_attack"),
        )
        state.stats.update(data.get("stats", {}))
        return state


@dataclass
class ColonyRun:
    transfers: list[tuple[str, str, int]] = field(default_factory=list)
    new_targets: list[str] = field(default_factory=list)
    claim: ProductionRequest | None = None


class ColonyCoordinator:
    def __init__(self, env: Environment, sink: ProductionSink, scorer: ScoringService,
                 workers: Mapping[str, WorkerRecord],
                 config: ColonyConfig | None = None,
                 state: ColonyState | None = None,
                 event_log: EventLog | None = None) -> None:
        self._env = env
        self._sink = sink
        self._scorer = scorer
        self._workers = workers
        self._config = config or ColonyConfig()
        self.state = state or ColonyState()
        self._events = event_log

    def _emit(self, tick: int, type: str, **data: Any) -> None:
        if self._events is not None:
            self._events.emit(tick, type, **data)

    # -- Classification --

    def classify(self, tick: int) -> None:
        env = self._env
        state = self.state
        owned = env.owned_sites()
        for site in state.owned:
            if site not in owned:
                logger.warning("lost site %s", site)
                state.losses.append({"site": site, "tick": tick})
                self._emit(tick, events.SITE_LOST, site=site)
                dropped = self._sink.drop_site(site)
                if dropped:
                    logger.info("dropped %d queued request(s) of %s", dropped, site)
        del state.losses[:-LOSS_HISTORY]
        for target in list(state.targets):
            if target.site in owned:
                state.targets.remove(target)
                state.stats["successes"] += 1
                logger.info("expansion to %s succeeded", target.site)
                self._emit(tick, events.SITE_CLAIMED, site=target.site)
        state.owned = owned

        reserved = set(env.reserved_sites())
        for site in state.reserved:
            found = env.controller(site)
            if found is None or found[1].owner is None and \
                    found[1].reserved_by in (None, env.username):
                reserved.add(site)
        state.reserved = sorted(reserved - set(owned))

        for site in env.sites():
            if not env.visible(site):
                continue
            found = env.controller(site)
            ctrl = found[1] if found is not None else None
            hostiles = len(env.hostiles(site))
            state.observed[site] = SiteObservation(
                last_seen=tick,
                sources=len(env.sources(site)),
                owner=ctrl.owner if ctrl is not None else None,
                reserved_by=ctrl.reserved_by if ctrl is not None else None,
                hostiles=hostiles,
                score=self._scorer.score(site),
            )
            if site in owned and hostiles:
                state.last_attack = tick

    def reserve(self, site: str) -> None:
        """Mark *site* for remote operation by its closest owned site."""
        if site not in self.state.reserved and site not in self.state.owned:
            self.state.reserved.append(site)
            self.state.reserved.sort()

    def remotes_for(self, site: str) -> list[str]:
        """Reserved sites whose closest owned site is *site*."""
        return [r for r in self.state.reserved
                if closest(r, self.state.owned) == site]

    # -- Balancing --

    def balance_resources(self, tick: int) -> list[tuple[str, str, int]]:
        """Schedule at most one transfer per surplus site this tick."""
        cfg = self._config
        env = self._env
        levels = {site: env.stored_energy(site) for site in self.state.owned}
        self.state.balances = dict(levels)
        if len(levels) < 2:
            return []
        mean = sum(levels.values()) / len(levels)
        surplus = sorted((s for s in levels if levels[s] > mean * (1 + cfg.balance_deviation)),
                         key=lambda s: (-levels[s], s))
        deficit = sorted((s for s in levels if levels[s] < mean * (1 - cfg.balance_deviation)),
                         key=lambda s: (levels[s], s))
        transfers: list[tuple[str, str, int]] = []
        for src in surplus:
            for dst in deficit:
                if levels[src] <= levels[dst] * cfg.transfer_ratio:
                    continue
                amount = min(int((levels[src] - levels[dst]) * cfg.transfer_fraction),
                             cfg.transfer_cap)
                if amount <= cfg.transfer_min:
                    continue
                code = env.send_energy(src, dst, amount)
                if code is ResultCode.TIRED:
                    break
                if code is not ResultCode.OK:
                    logger.debug("transfer %s -> %s refused: %s", src, dst, code.value)
                    continue
                levels[src] -= amount
                levels[dst] += amount
                transfers.append((src, dst, amount))
                logger.info("transfer %d energy %s -> %s", amount, src, dst)
                self._emit(tick, events.TRANSFER, site=src, target=dst, amount=amount)
                break
        return transfers

    # -- Expansion --

    def expansion_paused(self, tick: int) -> str | None:
        """Reason expansion is paused, or None when it may proceed."""
        cfg = self._config
        state = self.state
        if state.last_attack is not None and tick - state.last_attack < cfg.attack_window:
            return "under attack"
        if state.owned:
            average = sum(self._env.stored_energy(s) for s in state.owned) / len(state.owned)
            if average < cfg.storage_floor:
                return "storage below floor"
        if any(tick - loss["tick"] < cfg.loss_window for loss in state.losses):
            return "recent loss"
        return None

    def is_safe(self, site: str, obs: SiteObservation) -> bool:
        return (obs.owner is None and obs.hostiles < 2
                and not is_highway(site) and not is_source_keeper(site))

    def expansion_score(self, site: str, obs: SiteObservation) -> float:
        """Base score plus safety, proximity and neighbourhood adjustments."""
        score = obs.score
        if self.is_safe(site, obs):
            score += 50
        if self.state.owned:
            distance = min(site_distance(site, o) for o in self.state.owned)
            score += max(0, 20 - distance) * 5
        for neighbour in neighbors(site):
            other = self.state.observed.get(neighbour)
            if other is not None and other.owner not in (None, self._env.username):
                score -= 100
        if is_highway(site):
            score -= 50
        return score

    def plan_expansion(self, tick: int) -> list[str]:
        cfg = self._config
        state = self.state
        reason = self.expansion_paused(tick)
        if reason is not None:
            logger.debug("expansion paused: %s", reason)
            return []
        if len(state.owned) >= self._env.gcl:
            return []
        levels = [self._env.controller(s) for s in state.owned]
        if any(found is None or found[1].level < cfg.min_level for found in levels):
            return []
        taken = set(state.owned) | set(state.reserved) | set(state.target_names())
        scored = []
        for site, obs in state.observed.items():
            if site in taken or tick - obs.last_seen > cfg.candidate_freshness:
                continue
            if obs.owner is not None or obs.reserved_by not in (None, self._env.username):
                continue
            if is_source_keeper(site) or obs.sources == 0:
                continue
            scored.append((self.expansion_score(site, obs), site))
        scored.sort(key=lambda pair: (-pair[0], pair[1]))
        added = []
        for score, site in scored:
            if len(state.targets) >= cfg.max_targets:
                break
            state.targets.append(ExpansionTarget(site, score, tick))
            added.append(site)
            logger.info("expansion target %s (score %.0f)", site, score)
            self._emit(tick, events.EXPANSION_TARGET, site=site, score=score)
        return added

    def _claimer_en_route(self) -> bool:
        if any(r.role is Role.CLAIMER for r in self._sink.pending()):
            return True
        return any(w.role == Role.CLAIMER.value for w in self._workers.values())

    def process_claiming(self, tick: int) -> ProductionRequest | None:
        cfg = self._config
        env = self._env
        state = self.state
        if not state.targets or env.gcl <= len(state.owned):
            return None
        rich = [(env.stored_energy(s), s) for s in state.owned]
        rich = [pair for pair in rich if pair[0] > cfg.claim_reserve]
        if not rich:
            return None
        source = max(rich)[1]
        if self._claimer_en_route():
            return None
        if len(self._workers) >= env.gcl * 10 + 10:
            logger.debug("claiming held back: worker ceiling reached")
            return None

        def rank(target: ExpansionTarget) -> tuple[float, str]:
            distance = site_distance(source, target.site)
            value = target.score + max(0, 10 - distance) * 10
            if env.visible(target.site):
                value += 50
            return value, target.site

        best = max(state.targets, key=rank)
        body = build_body(Role.CLAIMER, env.energy_capacity(source))
        if not body:
            return None
        request = self._sink.submit(ProductionRequest(
            role=Role.CLAIMER, body=body, priority=CLAIM_PRIORITY, site=source,
            memory={"home": source, "target_site": best.site},
        ))
        best.requested_at = tick
        state.stats["attempts"] += 1
        logger.info("claimer requested at %s for %s", source, best.site)
        self._emit(tick, events.CLAIM_REQUESTED, site=source, target=best.site)
        return request

    # -- Upkeep --

    def cleanup(self, tick: int) -> None:
        cfg = self._config
        state = self.state
        for site in [s for s, o in state.observed.items()
                     if tick - o.last_seen > cfg.record_expiry]:
            del state.observed[site]
        for target in list(state.targets):
            obs = state.observed.get(target.site)
            taken = obs is not None and obs.owner not in (None, self._env.username)
            if taken or tick - target.added_at > cfg.record_expiry:
                state.targets.remove(target)
                state.stats["failures"] += 1
                logger.info("dropping expansion target %s", target.site)

    def run(self, tick: int) -> ColonyRun:
        cfg = self._config
        run = ColonyRun()
        self.classify(tick)
        run.transfers = self.balance_resources(tick)
        if tick % cfg.expansion_interval == 0:
            run.new_targets = self.plan_expansion(tick)
        if tick % cfg.claim_interval == 0:
            run.claim = self.process_claiming(tick)
        return run
