"""Enumerations, aliases and exceptions shared across tick-fleet."""
from __future__ import annotations

from enum import Enum

from tick import EntityId

WorkerName = str
SiteName = str
TaskId = str
TargetId = EntityId

ENERGY = "energy"


class Part(str, Enum):
    """Equipment part kinds. Each part grants at most one capability."""

    MOVE = "move"
    WORK = "work"
    CARRY = "carry"
    ATTACK = "attack"
    RANGED_ATTACK = "ranged_attack"
    HEAL = "heal"
    CLAIM = "claim"
    TOUGH = "tough"


class TaskType(str, Enum):
    HARVEST = "harvest"
    UPGRADE = "upgrade"
    BUILD = "build"
    REPAIR = "repair"
    TRANSFER = "transfer"
    WITHDRAW = "withdraw"
    PICKUP = "pickup"
    ATTACK = "attack"
    HEAL = "heal"
    RANGED_ATTACK = "ranged_attack"
    DISMANTLE = "dismantle"
    CLAIM = "claim_controller"
    RESERVE = "reserve_controller"


class TaskStatus(Enum):
    """Outcome of executing a task for one worker this tick."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Role(str, Enum):
    HARVESTER = "harvester"
    UPGRADER = "upgrader"
    BUILDER = "builder"
    HAULER = "hauler"
    REPAIRER = "repairer"
    DEFENDER = "defender"
    CLAIMER = "claimer"
    RESERVER = "reserver"
    REMOTE_HARVESTER = "remoteHarvester"
    SCOUT = "scout"
    DESTROYER = "destroyer"


class WorkerState(str, Enum):
    GATHERING = "gathering"
    WORKING = "working"
    TRANSFERRING = "transferring"
    IDLE = "idle"


class StructureKind(str, Enum):
    SPAWN = "spawn"
    EXTENSION = "extension"
    TOWER = "tower"
    CONTAINER = "container"
    STORAGE = "storage"
    TERMINAL = "terminal"
    ROAD = "road"
    WALL = "constructedWall"
    RAMPART = "rampart"
    LINK = "link"


class ResultCode(Enum):
    """Host primitive results. Primitives report, they never raise."""

    OK = "ok"
    NOT_OWNER = "not_owner"
    NAME_EXISTS = "name_exists"
    BUSY = "busy"
    NOT_ENOUGH_ENERGY = "not_enough_energy"
    NOT_ENOUGH_RESOURCES = "not_enough_resources"
    INVALID_TARGET = "invalid_target"
    FULL = "full"
    NOT_IN_RANGE = "not_in_range"
    INVALID_ARGS = "invalid_args"
    TIRED = "tired"
    NO_BODYPART = "no_bodypart"
    GCL_NOT_ENOUGH = "gcl_not_enough"


class FleetError(Exception):
    """Base class for tick-fleet errors."""


class UnknownTaskError(FleetError, KeyError):
    """Raised when a task id is not present in the registry."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Unknown task {task_id!r}")


class MemoryVersionError(FleetError):
    """Raised when persisted memory was written by a newer schema."""
