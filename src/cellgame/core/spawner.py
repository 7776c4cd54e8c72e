"""
Minion spawning and initial cell activation.

Each minion is dropped on a random level at a random point (uniform over
the area of 90% of the map disk) until it lands outside its type's
obstacles and inside some cell. The covering cell is switched on, capacity
cells first, which gives the scenario a playable opening layout.
"""

from __future__ import annotations

import logging

import numpy as np

from cellgame.core.config import MINION_TYPES, GameConfig
from cellgame.core.hex_layout import cell_covers
from cellgame.core.placement import Point, place_or_skip, random_polar_candidates
from cellgame.core.scenario import Cell, ExclusionZone, Level, Minion, PhysicalMap

logger = logging.getLogger(__name__)

SPAWN_RADIUS_FRACTION = 0.9
SPAWN_MAX_ATTEMPTS = 150


def _covering_cells(cells: list[Cell], x: float, z: float, config: GameConfig) -> list[Cell]:
    return [c for c in cells if cell_covers(c, x, z, config)]


def _spawn_point(
    rng: np.random.Generator,
    max_r: float,
    obstacles: list[ExclusionZone],
    cells: list[Cell],
    size: float,
    config: GameConfig,
) -> tuple[Point, bool]:
    """Sample a standing point; on exhaustion return the last sample, invalid."""
    last: Point = (0.0, 0.0)

    def fits(point: Point) -> bool:
        nonlocal last
        last = point
        x, z = point
        if any(zone.blocks(x, z, size) for zone in obstacles):
            return False
        return bool(_covering_cells(cells, x, z, config))

    spot = place_or_skip(
        random_polar_candidates(rng, max_r, SPAWN_MAX_ATTEMPTS, area_uniform=True), fits,
    )
    return (last, False) if spot is None else (spot, True)


def spawn_minions(
    config: GameConfig,
    levels: list[Level],
    physical_map: PhysicalMap | None,
    map_radius: float,
    rng: np.random.Generator,
) -> tuple[list[Minion], int]:
    """Place every enabled minion and switch on the cells serving them.

    Mutates ``levels`` (sets ``active`` on covering cells). When the attempt
    budget runs out the last sampled point is kept and the minion starts
    uncovered; this is counted, not raised.

    Returns:
        (minions, number of minions left at an invalid position)
    """
    minions: list[Minion] = []
    warnings = 0
    max_r = map_radius * SPAWN_RADIUS_FRACTION

    for type_name in MINION_TYPES:
        mc = config.minion_config(type_name)
        if not mc.enabled:
            continue
        for i in range(mc.count):
            level_id = int(rng.integers(config.map_levels))
            cells = levels[level_id].cells if level_id < len(levels) else []
            phys = physical_map.level(level_id) if physical_map is not None else None
            obstacles = phys.zones_for(type_name) if phys is not None else []

            (x, z), valid = _spawn_point(rng, max_r, obstacles, cells, mc.size, config)
            if valid:
                covering = _covering_cells(cells, x, z, config)
                provider = next((c for c in covering if c.is_capacity), covering[0])
                provider.active = True
            else:
                warnings += 1
                logger.debug("%s_%d kept at uncovered position (%.1f, %.1f)",
                             type_name.lower(), i, x, z)

            minions.append(Minion(
                id=f"{type_name.lower()}_{i}",
                minion_type=type_name,
                level=level_id,
                x=x,
                z=z,
                covered=valid,
                color=mc.color,
                size=mc.size,
            ))

    logger.info("Spawned %d minions (%d without a valid position)", len(minions), warnings)
    return minions, warnings
