"""Step results aggregated per tick.

Per-worker and per-site steps report success or failure as values. The only
place exceptions are turned into values is :func:`guarded`, applied at
those two boundaries; orchestrators inspect the returned results, log
failures and reset the affected subject.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Union


@dataclass(frozen=True)
class StepOk:
    subject: str
    detail: str = ""


@dataclass(frozen=True)
class StepFailed:
    subject: str
    error: Exception
    detail: str = ""

    def describe(self) -> str:
        return f"{self.subject}: {type(self.error).__name__}: {self.error}"


StepResult = Union[StepOk, StepFailed]


def guarded(subject: str, fn: Callable[[], str | None]) -> StepResult:
    """Run *fn* and wrap its outcome. *fn* may return a short detail string."""
    try:
        detail = fn()
    except Exception as exc:
        return StepFailed(subject, exc)
    return StepOk(subject, detail or "")


@dataclass
class TickReport:
    """Everything that succeeded or failed during one tick."""

    tick: int
    results: list[StepResult] = field(default_factory=list)
    emergency_mode: bool = False

    def add(self, result: StepResult) -> StepResult:
        self.results.append(result)
        return result

    def extend(self, results: list[StepResult]) -> None:
        self.results.extend(results)

    @property
    def failures(self) -> list[StepFailed]:
        return [r for r in self.results if isinstance(r, StepFailed)]

    @property
    def ok(self) -> bool:
        return not self.failures

    def __len__(self) -> int:
        return len(self.results)
