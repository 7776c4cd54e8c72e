"""
Master configuration for a Cell Game scenario.

Every generation and simulation parameter lives here. The external form is
a flat mapping of upper-case keys (``COVERAGE_CELL_RADIUS``, ``HUMAN`` ...)
so saved snapshots and HTTP payloads stay compatible with hand-written
scenario files; ``to_dict()`` / ``from_dict()`` convert between the two.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any

logger = logging.getLogger(__name__)

# Fixed agent-type order. Generation, spawning and ids all iterate in it.
MINION_TYPES: tuple[str, ...] = ("HUMAN", "HUMANOID", "DOG_ROBOT", "TURTLE_BOT", "DRONE")

# Types that may change level anywhere (no portal needed).
FLYING_TYPES: frozenset[str] = frozenset({"DRONE"})

# Types that change level only through transition zones.
GROUND_TYPES: frozenset[str] = frozenset({"HUMAN", "HUMANOID", "DOG_ROBOT"})

# Obstacles of these types never block portal placement.
PORTAL_EXEMPT_TYPES: frozenset[str] = frozenset({"TURTLE_BOT", "DRONE"})


@dataclass
class MinionTypeConfig:
    """Per-agent-type parameters."""

    enabled: bool = True
    count: int = 0
    max_move: float = 0.0
    req_throughput: float = 0.0
    color: str = "#ffffff"
    size: float = 2.5

    _FLAT_KEYS = {
        "ENABLED": "enabled",
        "COUNT": "count",
        "MAX_MOVE": "max_move",
        "REQ_THROUGHPUT": "req_throughput",
        "COLOR": "color",
        "SIZE": "size",
    }

    def to_dict(self) -> dict[str, Any]:
        return {flat: getattr(self, attr) for flat, attr in self._FLAT_KEYS.items()}

    def merged(self, block: Any, type_name: str) -> MinionTypeConfig:
        """Return a copy with a (partial) flat block applied on top."""
        if not isinstance(block, dict):
            raise ValueError(
                f"Config block '{type_name}' must be a mapping, got {type(block).__name__}"
            )
        updates: dict[str, Any] = {}
        for key, value in block.items():
            attr = self._FLAT_KEYS.get(key)
            if attr is None:
                logger.debug("Ignoring unknown key %s.%s", type_name, key)
                continue
            if attr == "enabled":
                updates[attr] = bool(value)
            elif attr == "color":
                updates[attr] = str(value)
            elif attr == "count":
                updates[attr] = _as_int(value, f"{type_name}.{key}")
            else:
                updates[attr] = _as_float(value, f"{type_name}.{key}")
        return replace(self, **updates)


def _default_minions() -> dict[str, MinionTypeConfig]:
    return {
        "HUMAN": MinionTypeConfig(count=5, max_move=6.0, req_throughput=5, color="#ffffff"),
        "HUMANOID": MinionTypeConfig(count=3, max_move=8.0, req_throughput=10, color="#ffcc00"),
        "DOG_ROBOT": MinionTypeConfig(count=2, max_move=20.0, req_throughput=15, color="#3366ff"),
        "TURTLE_BOT": MinionTypeConfig(count=2, max_move=4.0, req_throughput=2, color="#00ff66"),
        "DRONE": MinionTypeConfig(count=1, max_move=40.0, req_throughput=20, color="#9933ff"),
    }


# Flat key -> dataclass attribute, for scalar settings.
_SCALAR_KEYS: dict[str, str] = {
    "TARGET_STEPS": "target_steps",
    "TOTAL_ENERGY": "total_energy",
    "CELL_ENERGY_COST": "cell_energy_cost",
    "MAP_LEVELS": "map_levels",
    "COVERAGE_CELLS_COUNT": "coverage_cells_count",
    "COVERAGE_CELL_RADIUS": "coverage_cell_radius",
    "CAPACITY_CELLS_COUNT": "capacity_cells_count",
    "CAPACITY_CELL_RADIUS": "capacity_cell_radius",
    "COVERAGE_LIMIT_MBPS": "cell_throughput_limit",
    "LEVEL_DISTANCE": "level_distance",
    "PORTAL_PAIR_COUNT": "portal_pair_count",
    "PORTAL_AREA": "portal_area",
    "TOTAL_OBSTACLE_AREA_PER_LEVEL": "obstacle_area_pct",
    "RANDOM_SEED": "random_seed",
}

_KEY_ALIASES: dict[str, str] = {
    "MINION_ENERGY_COST": "CELL_ENERGY_COST",
}

_INT_ATTRS = {
    "target_steps", "map_levels", "coverage_cells_count",
    "capacity_cells_count", "portal_pair_count",
}


def _as_float(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"Config value for {key} must be numeric, got {value!r}")
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"Config value for {key} must be numeric, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"Config value for {key} must be finite, got {value!r}")
    return number


def _as_int(value: Any, key: str) -> int:
    return int(round(_as_float(value, key)))


def _check_non_negative(name: str, value: float) -> None:
    # NaN fails every comparison, so test finiteness explicitly
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be a finite number >= 0, got {value}")


@dataclass
class GameConfig:
    """
    Scenario configuration: map shape, energy economy and agent mix.

    Immutable in practice once a scenario has been generated from it; a new
    config means a new scenario (generate / change difficulty).
    """

    # === Game economy ===
    target_steps: int = 100
    total_energy: float = 1000.0
    cell_energy_cost: float = 1.0

    # === Map ===
    map_levels: int = 2
    coverage_cells_count: int = 7
    coverage_cell_radius: float = 50.0
    capacity_cells_count: int = 37
    capacity_cell_radius: float = 20.0
    cell_throughput_limit: float = 100.0  # Mbps, same limit for both kinds
    level_distance: float = 20.0  # vertical spacing, presentation only

    # === Physical layer ===
    portal_pair_count: int = 3
    portal_area: float = 300.0
    obstacle_area_pct: float = 40.0

    # === Agents ===
    minions: dict[str, MinionTypeConfig] = field(default_factory=_default_minions)

    random_seed: int | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ValueError if any number is non-finite or out of range."""
        for name in (
            "total_energy", "cell_energy_cost",
            "coverage_cell_radius", "capacity_cell_radius", "portal_area",
            "obstacle_area_pct", "cell_throughput_limit",
        ):
            _check_non_negative(name, getattr(self, name))
        if not math.isfinite(self.level_distance):
            raise ValueError(f"level_distance must be finite, got {self.level_distance}")
        for name in ("coverage_cells_count", "capacity_cells_count", "portal_pair_count", "target_steps"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.map_levels < 1:
            raise ValueError(f"map_levels must be >= 1, got {self.map_levels}")
        for type_name, mc in self.minions.items():
            if type_name not in MINION_TYPES:
                raise ValueError(f"Unknown minion type '{type_name}'")
            if mc.count < 0:
                raise ValueError(f"{type_name}.count must be >= 0, got {mc.count}")
            for attr in ("max_move", "size", "req_throughput"):
                _check_non_negative(f"{type_name}.{attr}", getattr(mc, attr))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------
    def radius_for(self, kind: str) -> float:
        """Service radius for a cell kind ('coverage' or 'capacity')."""
        return self.capacity_cell_radius if kind == "capacity" else self.coverage_cell_radius

    def minion_config(self, type_name: str) -> MinionTypeConfig:
        return self.minions.get(type_name.upper(), MinionTypeConfig(enabled=False))

    def enabled_types(self) -> list[str]:
        return [t for t in MINION_TYPES if self.minion_config(t).enabled]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        """Serialize to the flat upper-case form."""
        d: dict[str, Any] = {flat: getattr(self, attr) for flat, attr in _SCALAR_KEYS.items()}
        for type_name in MINION_TYPES:
            d[type_name] = self.minion_config(type_name).to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any], base: GameConfig | None = None) -> GameConfig:
        """Build a config from a (partial) flat mapping.

        Missing keys come from ``base`` (defaults when omitted). Keys that
        are not generation settings (viewer offsets etc.) are dropped.
        """
        if not isinstance(d, dict):
            raise ValueError(f"Config must be a mapping, got {type(d).__name__}")
        base = base or cls()
        values: dict[str, Any] = {
            f.name: getattr(base, f.name) for f in fields(cls)
        }
        values["minions"] = dict(base.minions)

        for raw_key, value in d.items():
            key = _KEY_ALIASES.get(raw_key, raw_key)
            if key in MINION_TYPES:
                current = values["minions"].get(key, MinionTypeConfig(enabled=False))
                values["minions"][key] = current.merged(value, key)
            elif key in _SCALAR_KEYS:
                attr = _SCALAR_KEYS[key]
                if attr == "random_seed":
                    values[attr] = None if value is None else _as_int(value, key)
                elif attr in _INT_ATTRS:
                    values[attr] = _as_int(value, key)
                else:
                    values[attr] = _as_float(value, key)
            else:
                logger.debug("Ignoring non-generation config key %s", raw_key)
        return cls(**values)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, s: str) -> GameConfig:
        return cls.from_dict(json.loads(s))

    def with_overrides(self, overrides: dict[str, Any]) -> GameConfig:
        """Return a new config with flat overrides applied on top of this one."""
        return self.from_dict(overrides, base=self)

    def diff(self, other: GameConfig) -> dict[str, tuple[Any, Any]]:
        """Return flat keys whose values differ between two configs."""
        mine, theirs = self.to_dict(), other.to_dict()
        return {k: (mine[k], theirs[k]) for k in mine if mine[k] != theirs.get(k)}
