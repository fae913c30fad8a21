"""Fleet event log: a bounded history plus lifetime totals per event type."""
from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from typing import Any

SPAWNED = "spawned"
REQUEST_DROPPED = "request_dropped"
TRANSFER = "transfer"
EXPANSION_TARGET = "expansion_target"
CLAIM_REQUESTED = "claim_requested"
SITE_CLAIMED = "site_claimed"
SITE_LOST = "site_lost"
EMERGENCY = "emergency"
WORKER_RESET = "worker_reset"
SITE_RESET = "site_reset"
MIGRATED = "migrated"


@dataclass
class Event:
    tick: int
    type: str
    data: dict[str, Any]

    @property
    def site(self) -> str | None:
        return self.data.get("site")


class EventLog:
    def __init__(self, max_entries: int = 1000) -> None:
        self._history: deque[Event] = deque(maxlen=max_entries if max_entries > 0 else None)
        self._totals: Counter[str] = Counter()

    def emit(self, tick: int, type: str, **data: Any) -> Event:
        event = Event(tick, type, data)
        self._history.append(event)
        self._totals[type] += 1
        return event

    def query(self, type: str | None = None, *, site: str | None = None,
              since: int | None = None) -> list[Event]:
        """Retained events, oldest first. ``since`` is inclusive."""
        return [
            e for e in self._history
            if (type is None or e.type == type)
            and (site is None or e.site == site)
            and (since is None or e.tick >= since)
        ]

    def last(self, type: str, site: str | None = None) -> Event | None:
        for e in reversed(self._history):
            if e.type == type and (site is None or e.site == site):
                return e
        return None

    def total(self, type: str) -> int:
        """Count of *type* events ever emitted, including ones rotated out."""
        return self._totals[type]

    def __len__(self) -> int:
        return len(self._history)
