"""
Procedural scenario generation.

Builds the cell layers of every level, the per-type obstacle field, the
paired inter-level portals, and finally spawns minions and seeds the
initial cell activation.

All generators take a numpy Generator; passing a seeded one reproduces
the same map.
"""

from __future__ import annotations

import logging
import math
from typing import Iterator

import numpy as np

from cellgame.core.config import MINION_TYPES, PORTAL_EXEMPT_TYPES, GameConfig
from cellgame.core.hex_layout import axial_to_world, generate_hex_spiral
from cellgame.core.placement import place_or_skip, sample_then_sweep
from cellgame.core.scenario import (
    Cell,
    CellKind,
    ExclusionZone,
    Level,
    PhysicalLevel,
    PhysicalMap,
    ScenarioState,
    StepRecord,
    TransitionZone,
)
from cellgame.core.spawner import spawn_minions

logger = logging.getLogger(__name__)

MIN_MAP_RADIUS = 80.0
MAP_RADIUS_MARGIN = 1.2

# Regular hexagon area factor, 3*sqrt(3)/2.
HEX_AREA_FACTOR = 2.598

# (base side length, share of the per-type target area)
OBSTACLE_SIZE_CLASSES: tuple[tuple[float, float], ...] = (
    (12.0, 0.5),
    (8.0, 0.3),
    (5.0, 0.2),
)
OBSTACLE_SIZE_VARIANCE = 0.1
OBSTACLE_SPACING = 2.0
OBSTACLE_MAX_ATTEMPTS = 200
HUB_SAFETY_RADIUS = 15.0

PORTAL_SPACING = 2.0
PORTAL_OBSTACLE_CLEARANCE = 2.0
PORTAL_EDGE_BUFFER = 1.0
PORTAL_RANDOM_ATTEMPTS = 20
PORTAL_SEARCH_RINGS = 8
PORTAL_SEARCH_ANGLES = 24


# ---------------------------------------------------------------------------
# Cell layers
# ---------------------------------------------------------------------------

def compute_map_radius(config: GameConfig) -> float:
    """Level disk radius: room for the coverage grid plus a 20% margin."""
    num_coverage = config.coverage_cells_count if config.coverage_cell_radius > 0 else 0
    area_based = math.sqrt(num_coverage) * config.coverage_cell_radius
    return max(MIN_MAP_RADIUS, area_based * MAP_RADIUS_MARGIN)


def build_cell_levels(config: GameConfig) -> list[Level]:
    """Identical coverage + capacity grids on every level, all cells off."""
    num_coverage = config.coverage_cells_count if config.coverage_cell_radius > 0 else 0
    cov_coords = generate_hex_spiral(num_coverage)
    cap_coords = generate_hex_spiral(config.capacity_cells_count)

    levels: list[Level] = []
    for lvl in range(config.map_levels):
        cells: list[Cell] = []
        for idx, coord in enumerate(cov_coords):
            x, z = axial_to_world(coord.q, coord.r, config.coverage_cell_radius)
            cells.append(Cell(
                id=f"cell_{lvl}_cov_{idx}", level=lvl, x=x, z=z,
                q=coord.q, r=coord.r, kind=CellKind.COVERAGE.value,
            ))
        for idx, coord in enumerate(cap_coords):
            x, z = axial_to_world(coord.q, coord.r, config.capacity_cell_radius)
            cells.append(Cell(
                id=f"cell_{lvl}_cap_{idx}", level=lvl, x=x, z=z,
                q=coord.q, r=coord.r, kind=CellKind.CAPACITY.value,
            ))
        levels.append(Level(id=lvl, cells=cells))
        logger.debug(
            "Level %d: %d coverage cells, %d capacity cells",
            lvl, len(cov_coords), len(cap_coords),
        )
    return levels


# ---------------------------------------------------------------------------
# Obstacles
# ---------------------------------------------------------------------------

def _obstacle_candidates(
    rng: np.random.Generator, base: float, map_radius: float, attempts: int,
) -> Iterator[ExclusionZone]:
    """Random-size, random-position obstacle proposals (owner filled in later)."""
    for _ in range(attempts):
        variance = 1.0 - OBSTACLE_SIZE_VARIANCE + rng.random() * 2 * OBSTACLE_SIZE_VARIANCE
        size = base * variance
        spawn_radius = map_radius - size / 2.0
        if spawn_radius <= 0:
            continue
        r = rng.random() * spawn_radius
        theta = rng.random() * 2.0 * math.pi
        yield ExclusionZone(x=r * math.cos(theta), z=r * math.sin(theta), size=size, minion_type="")


def _obstacle_fits(
    zone: ExclusionZone, placed: list[ExclusionZone], map_radius: float,
) -> bool:
    half = zone.half
    # Far corner must stay inside the level disk
    far_x = abs(zone.x) + half
    far_z = abs(zone.z) + half
    if math.hypot(far_x, far_z) >= map_radius:
        return False
    for other in placed:
        reach = half + other.half + OBSTACLE_SPACING
        if abs(zone.x - other.x) < reach and abs(zone.z - other.z) < reach:
            return False
    # Keep the hub clear
    if math.hypot(zone.x, zone.z) < HUB_SAFETY_RADIUS + half:
        return False
    return True


def generate_obstacles(
    config: GameConfig, map_radius: float, rng: np.random.Generator, level_id: int = 0,
) -> dict[str, list[ExclusionZone]]:
    """Rejection-sample the exclusion zones of one level, per minion type.

    The target obstacle area (a share of the level hexagon) is split evenly
    across minion types, then across the fixed size classes. Obstacles that
    cannot be placed within the attempt budget are skipped.

    Returns:
        Mapping of minion type to its zones on this level.
    """
    hex_area = HEX_AREA_FACTOR * map_radius * map_radius
    target_area = hex_area * (config.obstacle_area_pct / 100.0)
    area_per_type = target_area / len(MINION_TYPES)

    zones_by_type: dict[str, list[ExclusionZone]] = {}
    for type_name in MINION_TYPES:
        zones: list[ExclusionZone] = []
        skipped = 0
        for base, weight in OBSTACLE_SIZE_CLASSES:
            count = max(1, round(area_per_type * weight / (base * base)))
            for _ in range(count):
                zone = place_or_skip(
                    _obstacle_candidates(rng, base, map_radius, OBSTACLE_MAX_ATTEMPTS),
                    lambda z: _obstacle_fits(z, zones, map_radius),
                )
                if zone is None:
                    skipped += 1
                    continue
                zone.minion_type = type_name
                zones.append(zone)
        zones_by_type[type_name] = zones
        if skipped:
            logger.debug(
                "Level %d - %s: skipped %d obstacles after %d attempts each",
                level_id, type_name, skipped, OBSTACLE_MAX_ATTEMPTS,
            )
        logger.debug("Level %d - %s: placed %d obstacles", level_id, type_name, len(zones))

    logger.info(
        "Level %d: hex area=%.1f, target obstacle area=%.1f (%.0f%%)",
        level_id, hex_area, target_area, config.obstacle_area_pct,
    )
    return zones_by_type


# ---------------------------------------------------------------------------
# Portals
# ---------------------------------------------------------------------------

def portal_radius(area: float) -> float:
    return math.sqrt(max(0.0, area) / math.pi)


def _hits_obstacle(level: PhysicalLevel, x: float, z: float, radius: float) -> bool:
    """Circle vs axis-aligned square test against blocking obstacle types."""
    for type_name, zones in level.exclusion_zones.items():
        if type_name in PORTAL_EXEMPT_TYPES:
            continue
        for zone in zones:
            half = zone.half
            closest_x = max(zone.x - half, min(x, zone.x + half))
            closest_z = max(zone.z - half, min(z, zone.z + half))
            if math.hypot(x - closest_x, z - closest_z) < radius + PORTAL_OBSTACLE_CLEARANCE:
                return True
    return False


def _hits_portal(level: PhysicalLevel, x: float, z: float, radius: float) -> bool:
    return any(
        math.hypot(x - t.x, z - t.z) < radius + t.radius + PORTAL_SPACING
        for t in level.transition_zones
    )


def place_portals(
    physical_map: PhysicalMap,
    config: GameConfig,
    map_radius: float,
    rng: np.random.Generator,
    rings: int = PORTAL_SEARCH_RINGS,
    angles: int = PORTAL_SEARCH_ANGLES,
) -> int:
    """Place paired transition zones between every pair of adjacent levels.

    Each pair writes an ``_up`` zone on level L (target L+1) and a ``_down``
    zone at the same spot on L+1 (target L). Random sampling is tried
    first, then a ring sweep; a pair that fits nowhere is skipped.

    Returns:
        Number of pairs placed.
    """
    radius = portal_radius(config.portal_area)
    apothem = map_radius * math.sqrt(3.0) / 2.0
    spawn_radius = max(0.0, apothem - radius - PORTAL_EDGE_BUFFER)
    placed_pairs = 0

    for lower, upper in zip(physical_map.levels, physical_map.levels[1:]):
        for k in range(config.portal_pair_count):
            if spawn_radius <= 0:
                logger.warning(
                    "Portal radius %.1f leaves no room on the map; skipping pair %d L%d-L%d",
                    radius, k, lower.id, upper.id,
                )
                continue

            def accept(point: tuple[float, float]) -> bool:
                x, z = point
                if math.hypot(x, z) > spawn_radius:
                    return False
                for lvl in (lower, upper):
                    if _hits_portal(lvl, x, z, radius) or _hits_obstacle(lvl, x, z, radius):
                        return False
                return True

            spot = place_or_skip(
                sample_then_sweep(rng, spawn_radius, PORTAL_RANDOM_ATTEMPTS, rings, angles),
                accept,
            )
            if spot is None:
                logger.warning(
                    "Failed to place portal pair %d between L%d and L%d", k, lower.id, upper.id,
                )
                continue

            x, z = spot
            prefix = f"couple_{lower.id}_{upper.id}_{k}"
            lower.transition_zones.append(TransitionZone(
                id=f"{prefix}_up", x=x, z=z, radius=radius, target_level=upper.id,
            ))
            upper.transition_zones.append(TransitionZone(
                id=f"{prefix}_down", x=x, z=z, radius=radius, target_level=lower.id,
            ))
            placed_pairs += 1
            logger.debug("Placed portal pair %d between L%d-L%d at (%.1f, %.1f)",
                         k, lower.id, upper.id, x, z)
    return placed_pairs


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def generate_physical_map(
    config: GameConfig, map_radius: float, rng: np.random.Generator,
) -> PhysicalMap:
    """Obstacles for every level, then portals between adjacent levels."""
    physical_map = PhysicalMap(levels=[
        PhysicalLevel(id=lvl, exclusion_zones=generate_obstacles(config, map_radius, rng, lvl))
        for lvl in range(config.map_levels)
    ])
    place_portals(physical_map, config, map_radius, rng)
    return physical_map


def generate_scenario(
    config: GameConfig,
    rng: np.random.Generator | None = None,
    physical_map: PhysicalMap | None = None,
) -> StepRecord:
    """Generate a complete scenario as the step-0 record.

    Args:
        config: Scenario configuration.
        rng: Random generator; defaults to one seeded from ``config.random_seed``.
        physical_map: Reuse an existing physical map instead of generating one.

    Returns:
        StepRecord at index 0 with no last result.
    """
    if rng is None:
        rng = np.random.default_rng(config.random_seed)

    map_radius = compute_map_radius(config)
    logger.info(
        "Generating scenario: levels=%d, radius=%.1f, coverage=%d, capacity=%d, obstacles=%.0f%%",
        config.map_levels, map_radius, config.coverage_cells_count,
        config.capacity_cells_count, config.obstacle_area_pct,
    )
    levels = build_cell_levels(config)
    if physical_map is None:
        physical_map = generate_physical_map(config, map_radius, rng)

    minions, warnings = spawn_minions(config, levels, physical_map, map_radius, rng)
    if warnings:
        logger.warning("%d minions could not find a valid covered position", warnings)

    return StepRecord(
        scenario_state=ScenarioState(levels=levels, minions=minions),
        physical_map=physical_map,
        config=config,
        total_energy_consumed=0.0,
        step_index=0,
        map_radius=map_radius,
        last_result=None,
    )
