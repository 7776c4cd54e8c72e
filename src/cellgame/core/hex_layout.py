"""
Hexagonal layout helpers for cell grids.

Cell centres sit on an axial (q, r) hex lattice laid out as a spiral:
rings of increasing cube distance around the origin, each ring ordered by
polar angle. Cube coordinates are derived as (q, -q-r, r).

``point_in_hex`` is the one coverage test used by spawning, movement and
evaluation. Every caller goes through it (or ``cell_covers``) so that a
minion is never "covered" for one phase and "uncovered" for another.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellgame.core.config import GameConfig
    from cellgame.core.scenario import Cell

SQRT3 = math.sqrt(3.0)
HALF_SQRT3 = SQRT3 / 2.0


@dataclass(frozen=True)
class HexCoord:
    """Axial coordinate plus its ring distance from the origin."""

    q: int
    r: int

    @property
    def cube_coords(self) -> tuple[int, int, int]:
        """Cube coordinates derived from axial. Satisfies x + y + z = 0."""
        return (self.q, -self.q - self.r, self.r)

    @property
    def ring(self) -> int:
        return hex_distance((0, 0), (self.q, self.r))


def hex_distance(a: tuple[int, int], b: tuple[int, int]) -> int:
    """Hex distance between two axial coordinates.

    Converts to cube coordinates and takes the maximum absolute
    difference across the three axes.
    """
    ax, az = a
    ay = -ax - az
    bx, bz = b
    by = -bx - bz
    return max(abs(ax - bx), abs(ay - by), abs(az - bz))


def generate_hex_spiral(count: int) -> list[HexCoord]:
    """Return ``count`` axial coordinates ordered by (ring, polar angle).

    Candidates come from a square window of half-width ceil(sqrt(N)) + 2,
    which always holds more than N lattice points.

    Args:
        count: Number of coordinates wanted. Values <= 0 give an empty list.

    Returns:
        List of HexCoord, nearest ring first, no duplicates.
    """
    if count <= 0:
        return []
    window = math.ceil(math.sqrt(count)) + 2
    candidates: list[tuple[int, float, HexCoord]] = []
    for q in range(-window, window + 1):
        for r in range(-window, window + 1):
            dist = max(abs(q), abs(r), abs(q + r))
            candidates.append((dist, math.atan2(r, q), HexCoord(q, r)))
    candidates.sort(key=lambda c: (c[0], c[1]))
    return [coord for _, _, coord in candidates[:count]]


def axial_to_world(q: int, r: int, spacing: float) -> tuple[float, float]:
    """Planar (x, z) position of an axial coordinate for a given spacing radius."""
    x = spacing * (SQRT3 * q + HALF_SQRT3 * r)
    z = spacing * 1.5 * r
    return (x, z)


def point_in_hex(dx: float, dz: float, radius: float) -> bool:
    """Hexagonal coverage test for an offset from a cell centre.

    The point is covered iff |dz| < r, (sqrt(3)/2)|dx| + |dz|/2 < r and
    |dx| < r*sqrt(3)/2. Symmetric in the sign of dx and dz; the centre is
    covered for any r > 0.
    """
    ax = abs(dx)
    az = abs(dz)
    return (
        az < radius
        and HALF_SQRT3 * ax + 0.5 * az < radius
        and ax < radius * HALF_SQRT3
    )


def cell_covers(cell: Cell, x: float, z: float, config: GameConfig) -> bool:
    """Whether ``cell`` serves the point (x, z) using its kind's radius."""
    return point_in_hex(x - cell.x, z - cell.z, config.radius_for(cell.kind))
