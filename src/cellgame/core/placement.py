"""
Place-or-skip placement for obstacles, portals and spawning minions.

A placement is a stream of candidate positions checked against one
acceptance predicate; the first accepted candidate wins, and an exhausted
stream means the item is skipped. Two candidate strategies exist:

- ``random_polar_candidates``: a bounded number of random polar samples.
- ``ring_candidates``: a deterministic sweep over concentric rings, used as
  a fallback once random sampling has failed.

Chaining the two keeps the acceptance rules identical for both searches.
"""

from __future__ import annotations

import itertools
import math
from typing import Callable, Iterable, Iterator, TypeVar

import numpy as np

T = TypeVar("T")

Point = tuple[float, float]


def random_polar_candidates(
    rng: np.random.Generator,
    max_radius: float,
    attempts: int,
    area_uniform: bool = False,
) -> Iterator[Point]:
    """Yield up to ``attempts`` random points inside a disk.

    Args:
        rng: Random generator.
        max_radius: Disk radius.
        attempts: Number of samples.
        area_uniform: Draw r = sqrt(u) * R (uniform over area) instead of
            r = u * R (denser towards the centre).
    """
    for _ in range(attempts):
        u = rng.random()
        r = (math.sqrt(u) if area_uniform else u) * max_radius
        theta = rng.random() * 2.0 * math.pi
        yield (r * math.cos(theta), r * math.sin(theta))


def ring_candidates(max_radius: float, rings: int = 8, angles: int = 24) -> Iterator[Point]:
    """Yield the centre, then ``rings`` concentric rings of ``angles`` points each."""
    yield (0.0, 0.0)
    if max_radius <= 0:
        return
    for i in range(1, rings + 1):
        rr = max_radius * i / rings
        for j in range(angles):
            theta = 2.0 * math.pi * j / angles
            yield (rr * math.cos(theta), rr * math.sin(theta))


def place_or_skip(candidates: Iterable[T], accept: Callable[[T], bool]) -> T | None:
    """Return the first candidate accepted by ``accept``, or None."""
    for candidate in candidates:
        if accept(candidate):
            return candidate
    return None


def sample_then_sweep(
    rng: np.random.Generator,
    max_radius: float,
    random_attempts: int,
    rings: int,
    angles: int,
) -> Iterator[Point]:
    """Random samples first, then the deterministic ring sweep."""
    return itertools.chain(
        random_polar_candidates(rng, max_radius, random_attempts),
        ring_candidates(max_radius, rings=rings, angles=angles),
    )
