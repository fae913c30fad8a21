"""tick-fleet - Task scheduling and worker lifecycle for a fleet of autonomous workers."""
from __future__ import annotations

from typing import TYPE_CHECKING

# Enumerations and errors
from tick_fleet.types import (
    Part, Role, StructureKind, TaskType, TaskStatus, WorkerState, ResultCode,
    FleetError, UnknownTaskError, MemoryVersionError,
)

# Configuration
from tick_fleet.config import (
    FleetConfig, TaskConfig, SpawnConfig, PlannerConfig, DefenseConfig,
    ColonyConfig, CpuConfig,
)

# Host simulation
from tick_fleet.components import HOST_COMPONENTS
from tick_fleet.environment import Environment, make_world_system

# Decision core
from tick_fleet.body import body_cost, build_body, can_perform, capabilities
from tick_fleet.tasks import Task, TaskRegistry
from tick_fleet.profile import SiteProfile, build_profile
from tick_fleet.planner import ProductionPlanner
from tick_fleet.spawning import ProductionQueue, ProductionRequest, ProductionSink
from tick_fleet.site import SiteScheduler, in_batch
from tick_fleet.colony import ColonyCoordinator, ColonyState
from tick_fleet.behaviors import Behaviors, ROLES
from tick_fleet.services import GridSiteMap, SiteMap, ScoringService, SourceScorer

# Framework objects
from tick_fleet.memory import FleetMemory, WorkerRecord, SiteRecord
from tick_fleet.events import EventLog, Event
from tick_fleet.results import StepOk, StepFailed, TickReport
from tick_fleet.fleet import Fleet, FleetContext, make_fleet_system
from tick_fleet.console import Console

if TYPE_CHECKING:
    from tick import World


def register_fleet_components(world: World) -> None:
    for ctype in HOST_COMPONENTS:
        world.register_component(ctype)


__all__ = [
    "Part", "Role", "StructureKind", "TaskType", "TaskStatus", "WorkerState",
    "ResultCode", "FleetError", "UnknownTaskError", "MemoryVersionError",
    "FleetConfig", "TaskConfig", "SpawnConfig", "PlannerConfig",
    "DefenseConfig", "ColonyConfig", "CpuConfig",
    "HOST_COMPONENTS", "Environment", "make_world_system",
    "body_cost", "build_body", "can_perform", "capabilities",
    "Task", "TaskRegistry", "SiteProfile", "build_profile",
    "ProductionPlanner", "ProductionQueue", "ProductionRequest", "ProductionSink",
    "SiteScheduler", "in_batch", "ColonyCoordinator", "ColonyState",
    "Behaviors", "ROLES", "GridSiteMap", "SiteMap", "ScoringService", "SourceScorer",
    "FleetMemory", "WorkerRecord", "SiteRecord", "EventLog", "Event",
    "StepOk", "StepFailed", "TickReport",
    "Fleet", "FleetContext", "make_fleet_system", "Console",
    "register_fleet_components",
]
