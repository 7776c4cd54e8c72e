"""
Per-step minion movement.

A minion tries a handful of random moves and keeps the first one that
lands somewhere it may stand: outside its type's obstacles and inside the
footprint of some cell (on or off) of the level it ends up on. Drones may
hop to the next level anywhere; walkers only through portals.
"""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np

from cellgame.core.config import FLYING_TYPES, GROUND_TYPES, GameConfig
from cellgame.core.hex_layout import cell_covers
from cellgame.core.scenario import Level, Minion, PhysicalMap

MOVE_ATTEMPTS = 5
FLYING_LEVEL_CHANCE = 0.05
PORTAL_LEVEL_CHANCE = 0.10


def _target_level(
    minion: Minion,
    x: float,
    z: float,
    config: GameConfig,
    physical_map: PhysicalMap | None,
    rng: np.random.Generator,
) -> int:
    if minion.minion_type in FLYING_TYPES:
        if rng.random() < FLYING_LEVEL_CHANCE:
            return (minion.level + 1) % config.map_levels
        return minion.level

    if minion.minion_type in GROUND_TYPES and physical_map is not None:
        phys = physical_map.level(minion.level)
        if phys is not None:
            for zone in phys.transition_zones:
                if zone.contains(x, z):
                    if rng.random() < PORTAL_LEVEL_CHANCE:
                        return zone.target_level
                    break
    return minion.level


def _can_stand(
    minion: Minion,
    x: float,
    z: float,
    level_id: int,
    levels: list[Level],
    config: GameConfig,
    physical_map: PhysicalMap | None,
) -> bool:
    phys = physical_map.level(level_id) if physical_map is not None else None
    if phys is not None:
        size = config.minion_config(minion.minion_type).size
        if any(zone.blocks(x, z, size) for zone in phys.zones_for(minion.minion_type)):
            return False

    cells = next((lvl.cells for lvl in levels if lvl.id == level_id), [])
    if not cells:
        return True
    return any(cell_covers(c, x, z, config) for c in cells)


def move_minion(
    minion: Minion,
    levels: list[Level],
    config: GameConfig,
    physical_map: PhysicalMap | None,
    rng: np.random.Generator,
) -> Minion:
    """Return the minion after one turn of movement (a new object).

    If none of the attempts is valid the minion keeps its position and
    level; that is a missed move, not a failure.
    """
    max_move = config.minion_config(minion.minion_type).max_move
    for _ in range(MOVE_ATTEMPTS):
        angle = rng.random() * 2.0 * math.pi
        dist = rng.random() * max_move
        new_x = minion.x + math.cos(angle) * dist
        new_z = minion.z + math.sin(angle) * dist
        new_level = _target_level(minion, new_x, new_z, config, physical_map, rng)

        if _can_stand(minion, new_x, new_z, new_level, levels, config, physical_map):
            return replace(minion, x=new_x, z=new_z, level=new_level)
    return replace(minion)


def move_minions(
    minions: list[Minion],
    levels: list[Level],
    config: GameConfig,
    physical_map: PhysicalMap | None,
    rng: np.random.Generator,
) -> list[Minion]:
    """Move every minion once, in list order."""
    return [move_minion(m, levels, config, physical_map, rng) for m in minions]
