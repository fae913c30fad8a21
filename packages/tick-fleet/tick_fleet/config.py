"""Configuration dataclasses for the fleet decision core."""
from __future__ import annotations

from dataclasses import dataclass, field

# Per-territory-level baselines, levels 1..8.
_BUILDERS = (2, 3, 4, 5, 1, 1, 1, 1)
_UPGRADERS = (5, 5, 6, 8, 2, 1, 1, 1)
_HARVESTERS = (3, 4, 4, 2, 2, 2, 2, 2)


@dataclass(frozen=True)
class TaskConfig:
    """Task registry limits and cadences.

    Attributes:
        max_age: Ticks after which any task expires.
        stale_after: Ticks a task may sit with no assignees before it expires.
        cleanup_interval: Ticks between registry cleanup passes.
        remote_interval: Ticks between remote task-sourcing passes.
        min_pickup: Dropped amounts at or below this are not worth a task.
        repair_ratio: Structures below this fraction of max hits get repaired.
        repair_ceiling: Structures at or above this many hits are never repaired.
        wall_critical_hits: Walls and ramparts below this get urgent repair.
    """

    max_age: int = 300
    stale_after: int = 50
    cleanup_interval: int = 5
    remote_interval: int = 20
    min_pickup: int = 50
    repair_ratio: float = 0.75
    repair_ceiling: int = 1_000_000
    wall_critical_hits: int = 5000

    def __post_init__(self) -> None:
        if self.max_age <= 0:
            raise ValueError(f"max_age must be > 0, got {self.max_age}")
        if self.stale_after < 0:
            raise ValueError(f"stale_after must be >= 0, got {self.stale_after}")
        if self.cleanup_interval <= 0:
            raise ValueError(
                f"cleanup_interval must be > 0, got {self.cleanup_interval}"
            )
        if self.remote_interval <= 0:
            raise ValueError(
                f"remote_interval must be > 0, got {self.remote_interval}"
            )
        if not 0.0 < self.repair_ratio <= 1.0:
            raise ValueError(
                f"repair_ratio must be in (0, 1], got {self.repair_ratio}"
            )


@dataclass(frozen=True)
class SpawnConfig:
    """Production queue behaviour.

    Attributes:
        max_retries: Structural rejections tolerated before a request is dropped.
        lifespan: Ticks a freshly produced worker lives.
        ticks_per_part: Production time per equipment part.
    """

    max_retries: int = 5
    lifespan: int = 1500
    ticks_per_part: int = 3

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.lifespan <= 0:
            raise ValueError(f"lifespan must be > 0, got {self.lifespan}")


@dataclass(frozen=True)
class PlannerConfig:
    """Roster targets for the production planner.

    Attributes:
        builders: Baseline builder count per territory level (1..8).
        upgraders: Baseline upgrader count per territory level (1..8).
        harvesters: Baseline gatherer count per territory level (1..8).
        max_builders: Hard cap on builders regardless of backlog.
        max_repairers: Hard cap on repairers regardless of damage.
        sites_per_builder: Construction sites one builder is expected to cover.
        damaged_per_repairer: Damaged structures one repairer is expected to cover.
        upgrader_reserve: Stored energy kept back before scaling upgraders.
        energy_per_upgrader: Stored energy above the reserve funding one extra upgrader.
        downgrade_emergency: Ticks-to-loss under which growth becomes an emergency.
        emergency_upgraders: Growers forced when territory loss is imminent.
        hauler_level: Territory level from which dedicated haulers are planned.
        hauler_storage_override_level: Territory level from which stored energy sets hauler count.
        energy_per_hauler: Stored energy per hauler under the override.
        max_haulers: Cap on haulers under the stored-energy override.
        critical_energy: Available energy below which the urgent manifest is used.
        scout_interval: Ticks between scout requests.
        remote_level: Territory level from which remote sites are worked.
        remote_harvesters: Remote gatherers per reserved site.
        donor_storage: Stored energy a site needs to donate an emergency hauler.
    """

    builders: tuple[int, ...] = _BUILDERS
    upgraders: tuple[int, ...] = _UPGRADERS
    harvesters: tuple[int, ...] = _HARVESTERS
    max_builders: int = 3
    max_repairers: int = 2
    sites_per_builder: int = 5
    damaged_per_repairer: int = 10
    upgrader_reserve: int = 10_000
    energy_per_upgrader: int = 20_000
    downgrade_emergency: int = 2000
    emergency_upgraders: int = 2
    hauler_level: int = 3
    hauler_storage_override_level: int = 6
    energy_per_hauler: int = 100_000
    max_haulers: int = 4
    critical_energy: int = 300
    scout_interval: int = 1000
    remote_level: int = 3
    remote_harvesters: int = 2
    donor_storage: int = 20_000

    def __post_init__(self) -> None:
        for name in ("builders", "upgraders", "harvesters"):
            table = getattr(self, name)
            if len(table) != 8:
                raise ValueError(f"{name} must list 8 levels, got {len(table)}")
        if self.energy_per_upgrader <= 0:
            raise ValueError("energy_per_upgrader must be > 0")
        if self.energy_per_hauler <= 0:
            raise ValueError("energy_per_hauler must be > 0")

    def baseline(self, table: tuple[int, ...], level: int) -> int:
        """Look up a per-level baseline, clamping *level* into 1..8."""
        return table[min(max(level, 1), 8) - 1]


@dataclass(frozen=True)
class DefenseConfig:
    """Emergency detection and defender sizing.

    Attributes:
        hostile_threshold: Hostile count that alone raises the emergency flag.
        rampart_critical_hits: Ramparts under this many hits raise the flag.
        notify_interval: Minimum ticks between emergency notifications.
        defender_min: Defenders wanted while boosted hostiles are present.
    """

    hostile_threshold: int = 3
    rampart_critical_hits: int = 1000
    notify_interval: int = 100
    defender_min: int = 2

    def __post_init__(self) -> None:
        if self.hostile_threshold < 1:
            raise ValueError("hostile_threshold must be >= 1")
        if self.notify_interval < 0:
            raise ValueError("notify_interval must be >= 0")


@dataclass(frozen=True)
class ColonyConfig:
    """Cross-site balancing and expansion thresholds.

    Attributes:
        balance_deviation: Fraction of the mean a site must deviate to be surplus/deficit.
        transfer_ratio: Surplus must exceed deficit by this factor to transfer.
        transfer_fraction: Share of the difference moved per transfer.
        transfer_cap: Maximum amount per transfer.
        transfer_min: Transfers at or below this amount are skipped.
        expansion_interval: Ticks between expansion planning passes.
        claim_interval: Ticks between claim dispatch passes.
        max_targets: Maximum pending expansion targets.
        attack_window: Hostile sightings this recent pause expansion.
        storage_floor: Average stored energy below this pauses expansion.
        loss_window: A site lost this recently pauses expansion.
        candidate_freshness: Candidates must have been observed this recently.
        min_level: Every owned site must reach this level before expanding.
        claim_reserve: Stored energy the claiming source site must hold.
        record_expiry: Site records unseen for this long are pruned.
    """

    balance_deviation: float = 0.2
    transfer_ratio: float = 1.5
    transfer_fraction: float = 0.3
    transfer_cap: int = 10_000
    transfer_min: int = 1000
    expansion_interval: int = 100
    claim_interval: int = 200
    max_targets: int = 2
    attack_window: int = 1000
    storage_floor: int = 10_000
    loss_window: int = 10_000
    candidate_freshness: int = 5000
    min_level: int = 4
    claim_reserve: int = 20_000
    record_expiry: int = 20_000

    def __post_init__(self) -> None:
        if not 0.0 <= self.balance_deviation < 1.0:
            raise ValueError(
                f"balance_deviation must be in [0, 1), got {self.balance_deviation}"
            )
        if not 0.0 < self.transfer_fraction <= 1.0:
            raise ValueError(
                f"transfer_fraction must be in (0, 1], got {self.transfer_fraction}"
            )
        if self.expansion_interval <= 0 or self.claim_interval <= 0:
            raise ValueError("expansion and claim intervals must be > 0")


@dataclass(frozen=True)
class CpuConfig:
    """CPU bucket thresholds.

    Attributes:
        critical_bucket: Below this the fleet runs in batched emergency mode.
        low_bucket: Below this optional scans are skipped.
        target_bucket: Level the fleet tries to stay above.
        batches: Number of worker batches rotated through in emergency mode.
    """

    critical_bucket: int = 1000
    low_bucket: int = 3000
    target_bucket: int = 8000
    batches: int = 3

    def __post_init__(self) -> None:
        if not self.critical_bucket <= self.low_bucket <= self.target_bucket:
            raise ValueError("bucket thresholds must be ascending")
        if self.batches < 1:
            raise ValueError(f"batches must be >= 1, got {self.batches}")


@dataclass(frozen=True)
class FleetConfig:
    """Top-level configuration bundle.

    Attributes:
        username: Owner name the fleet recognises as itself.
        memory_version: Persisted schema version; bumping it triggers migration.
        memory_cleanup_interval: Ticks between orphan record sweeps.
        stats_interval: Ticks between statistics dumps.
    """

    username: str = "fleet"
    memory_version: int = 3
    memory_cleanup_interval: int = 20
    stats_interval: int = 100
    tasks: TaskConfig = field(default_factory=TaskConfig)
    spawn: SpawnConfig = field(default_factory=SpawnConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    defense: DefenseConfig = field(default_factory=DefenseConfig)
    colony: ColonyConfig = field(default_factory=ColonyConfig)
    cpu: CpuConfig = field(default_factory=CpuConfig)

    def __post_init__(self) -> None:
        if self.memory_version < 1:
            raise ValueError("memory_version must be >= 1")
        if self.stats_interval <= 0 or self.memory_cleanup_interval <= 0:
            raise ValueError("intervals must be > 0")
