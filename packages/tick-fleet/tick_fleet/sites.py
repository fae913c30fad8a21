"""Site-name geometry.

Sites are named after their grid coordinates, e.g. ``W3N7`` or ``E12S4``.
West and north coordinates start at -1 so that ``W0``/``E0`` and
``N0``/``S0`` are adjacent.
"""
from __future__ import annotations

import re

_NAME = re.compile(r"^([WE])(\d+)([NS])(\d+)$")
_SOURCE_KEEPER = re.compile(r"^[WE]\d[36][NS]\d[36]$")


def parse_site(name: str) -> tuple[int, int]:
    """Return global ``(x, y)`` grid coordinates for a site name."""
    match = _NAME.match(name)
    if match is None:
        raise ValueError(f"Invalid site name {name!r}")
    we, xs, ns, ys = match.groups()
    x = int(xs)
    y = int(ys)
    return (-x - 1 if we == "W" else x, -y - 1 if ns == "N" else y)


def site_name(x: int, y: int) -> str:
    we = f"W{-x - 1}" if x < 0 else f"E{x}"
    ns = f"N{-y - 1}" if y < 0 else f"S{y}"
    return we + ns


def site_distance(a: str, b: str) -> int:
    """Linear (Chebyshev) distance in sites between two site names."""
    ax, ay = parse_site(a)
    bx, by = parse_site(b)
    return max(abs(ax - bx), abs(ay - by))


def neighbors(name: str) -> list[str]:
    """Names of the four sites sharing an edge with *name* (N, E, S, W)."""
    x, y = parse_site(name)
    return [site_name(x, y - 1), site_name(x + 1, y),
            site_name(x, y + 1), site_name(x - 1, y)]


def is_highway(name: str) -> bool:
    return name[-1] in "05"


def is_source_keeper(name: str) -> bool:
    return _SOURCE_KEEPER.match(name) is not None


def closest(name: str, candidates: list[str]) -> str | None:
    """Closest candidate to *name*; ties resolve to the lexically smallest."""
    if not candidates:
        return None
    return min(candidates, key=lambda c: (site_distance(name, c), c))
