"""Operational console - inspection helpers for a running fleet."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tick_fleet.fleet import stats

if TYPE_CHECKING:
    from tick_fleet.fleet import Fleet

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Console:
    def __init__(self, fleet: Fleet) -> None:
        self._fleet = fleet

    def set_log_level(self, level: str | int) -> int:
        """Set the level of every ``tick_fleet`` logger. Returns the numeric level."""
        if isinstance(level, str):
            if level.lower() not in _LEVELS:
                raise ValueError(f"unknown log level {level!r}")
            level = _LEVELS[level.lower()]
        logging.getLogger("tick_fleet").setLevel(level)
        return level

    def stats(self) -> str:
        data = stats(self._fleet.open())
        lines = [f"tick {self._fleet.env.tick}"]
        for key, value in data.items():
            if isinstance(value, dict):
                inner = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
                lines.append(f"  {key}: {inner}")
            elif isinstance(value, list):
                lines.append(f"  {key}: {', '.join(value) or '-'}")
            else:
                lines.append(f"  {key}: {value}")
        return "\n".join(lines)

    def tasks(self, site: str | None = None) -> str:
        """One line per task, most urgent first."""
        registry = self._fleet.open().registry
        rows = sorted(registry.tasks(site), key=lambda t: (-t.priority, t.seq))
        if not rows:
            return "no tasks"
        return "\n".join(
            f"{t.id:<28} p={t.priority:<4} {t.site:<8} target={t.target_id} "
            f"assigned={','.join(t.assigned) or '-'}"
            for t in rows
        )

    def events(self, type: str | None = None, site: str | None = None,
               limit: int = 20) -> str:
        """Most recent retained events, newest last."""
        rows = self._fleet.events.query(type, site=site)[-limit:]
        if not rows:
            return "no events"
        return "\n".join(
            f"{e.tick:>6} {e.type:<16} "
            + " ".join(f"{k}={v}" for k, v in e.data.items())
            for e in rows
        )
