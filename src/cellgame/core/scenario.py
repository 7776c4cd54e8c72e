"""
Scenario data model.

The player-visible logical state (levels of cells plus minions) is kept
apart from the physical map (obstacles and portals), which only the server
sees. A StepRecord bundles both with the config and energy totals so that
any record in a session's history can be replayed on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cellgame.core.config import GameConfig


class CellKind(str, Enum):
    """Cell classifications."""

    COVERAGE = "coverage"
    CAPACITY = "capacity"


@dataclass
class Cell:
    """A service emitter at a fixed position on one level.

    The service radius is not stored here; it comes from the config for
    the cell's kind.
    """

    id: str
    level: int
    x: float
    z: float
    q: int
    r: int
    kind: str
    active: bool = False
    capacity_consumed: float = 0.0
    should_be_on: bool = False

    @property
    def is_capacity(self) -> bool:
        return self.kind == CellKind.CAPACITY.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "x": self.x,
            "z": self.z,
            "q": self.q,
            "r": self.r,
            "type": self.kind,
            "active": self.active,
            "capacityConsumed": self.capacity_consumed,
            "shouldBeOn": self.should_be_on,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Cell:
        return cls(
            id=d["id"],
            level=int(d["level"]),
            x=float(d["x"]),
            z=float(d["z"]),
            q=int(d.get("q", 0)),
            r=int(d.get("r", 0)),
            kind=CellKind(d["type"]).value,
            active=bool(d.get("active", False)),
            capacity_consumed=float(d.get("capacityConsumed", 0.0)),
            should_be_on=bool(d.get("shouldBeOn", False)),
        )


@dataclass
class Level:
    """Ordered cells of one map level."""

    id: int
    cells: list[Cell] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "cells": [c.to_dict() for c in self.cells]}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Level:
        return cls(id=int(d["id"]), cells=[Cell.from_dict(c) for c in d.get("cells", [])])


@dataclass
class Minion:
    """A mobile agent that needs continuous service."""

    id: str
    minion_type: str  # upper-case type key, e.g. "HUMAN"
    level: int
    x: float
    z: float
    covered: bool = True
    color: str = "#ffffff"
    size: float = 2.5

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.minion_type.lower(),
            "level": self.level,
            "x": self.x,
            "z": self.z,
            "covered": self.covered,
            "color": self.color,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Minion:
        return cls(
            id=d["id"],
            minion_type=str(d["type"]).upper(),
            level=int(d["level"]),
            x=float(d["x"]),
            z=float(d["z"]),
            covered=bool(d.get("covered", True)),
            color=d.get("color", "#ffffff"),
            size=float(d.get("size", 2.5)),
        )


@dataclass
class ScenarioState:
    """Player-visible state: levels of cells and the minions on them."""

    levels: list[Level] = field(default_factory=list)
    minions: list[Minion] = field(default_factory=list)

    def level(self, level_id: int) -> Level | None:
        for lvl in self.levels:
            if lvl.id == level_id:
                return lvl
        return None

    def all_cells(self) -> list[Cell]:
        """Every cell in map insertion order (level order, then cell order)."""
        return [c for lvl in self.levels for c in lvl.cells]

    def cell_ids(self) -> set[str]:
        return {c.id for c in self.all_cells()}

    def active_cell_ids(self) -> list[str]:
        return [c.id for c in self.all_cells() if c.active]

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": [lvl.to_dict() for lvl in self.levels],
            "minions": [m.to_dict() for m in self.minions],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ScenarioState:
        return cls(
            levels=[Level.from_dict(lvl) for lvl in d.get("levels", [])],
            minions=[Minion.from_dict(m) for m in d.get("minions", [])],
        )


@dataclass
class ExclusionZone:
    """Axis-aligned square obstacle; blocks only its owner type."""

    x: float
    z: float
    size: float
    minion_type: str

    @property
    def half(self) -> float:
        return self.size / 2.0

    def blocks(self, x: float, z: float, footprint: float = 0.0) -> bool:
        """Whether a square footprint of side ``footprint`` at (x, z) overlaps the zone."""
        reach = self.half + footprint / 2.0
        return abs(x - self.x) < reach and abs(z - self.z) < reach

    def to_dict(self) -> dict[str, Any]:
        return {"x": self.x, "z": self.z, "size": self.size, "type": self.minion_type}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ExclusionZone:
        return cls(x=float(d["x"]), z=float(d["z"]), size=float(d["size"]), minion_type=d["type"])


@dataclass
class TransitionZone:
    """Circular portal with a twin at the same (x, z) on the paired level."""

    id: str
    x: float
    z: float
    radius: float
    target_level: int

    def contains(self, x: float, z: float) -> bool:
        return (x - self.x) ** 2 + (z - self.z) ** 2 < self.radius ** 2

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "x": self.x,
            "z": self.z,
            "radius": self.radius,
            "targetLevel": self.target_level,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TransitionZone:
        return cls(
            id=d["id"],
            x=float(d["x"]),
            z=float(d["z"]),
            radius=float(d["radius"]),
            target_level=int(d["targetLevel"]),
        )


@dataclass
class PhysicalLevel:
    """Obstacles (per owning type) and portals of one level."""

    id: int
    exclusion_zones: dict[str, list[ExclusionZone]] = field(default_factory=dict)
    transition_zones: list[TransitionZone] = field(default_factory=list)

    def zones_for(self, minion_type: str) -> list[ExclusionZone]:
        return self.exclusion_zones.get(minion_type.upper(), [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type_exclusion_zones": {
                t: [z.to_dict() for z in zones] for t, zones in self.exclusion_zones.items()
            },
            "transition_zones": [t.to_dict() for t in self.transition_zones],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PhysicalLevel:
        return cls(
            id=int(d["id"]),
            exclusion_zones={
                t: [ExclusionZone.from_dict(z) for z in zones]
                for t, zones in d.get("type_exclusion_zones", {}).items()
            },
            transition_zones=[TransitionZone.from_dict(t) for t in d.get("transition_zones", [])],
        )


@dataclass
class PhysicalMap:
    """Generation-time geometry. Server side only."""

    levels: list[PhysicalLevel] = field(default_factory=list)

    def level(self, level_id: int) -> PhysicalLevel | None:
        for lvl in self.levels:
            if lvl.id == level_id:
                return lvl
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"levels": [lvl.to_dict() for lvl in self.levels]}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PhysicalMap:
        return cls(levels=[PhysicalLevel.from_dict(lvl) for lvl in d.get("levels", [])])


@dataclass
class StepResult:
    """Summary of the last evaluated step."""

    message: str
    game_over: bool = False
    failure: bool = False
    completed: bool = False
    energy_consumed: float = 0.0
    total_energy_consumed: float = 0.0
    energy_left: float = 0.0
    uncovered_minions: list[str] = field(default_factory=list)
    cells_should_be_on: list[str] = field(default_factory=list)
    functional_cell_ids: list[str] = field(default_factory=list)
    cell_loads: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "msg": self.message,
            "gameOver": self.game_over,
            "failure": self.failure,
            "completed": self.completed,
            "energyConsumed": self.energy_consumed,
            "totalEnergyConsumed": self.total_energy_consumed,
            "energyLeft": self.energy_left,
            "uncoveredMinions": list(self.uncovered_minions),
            "cellsShouldBeOn": list(self.cells_should_be_on),
            "functionalCellIds": list(self.functional_cell_ids),
            "cellLoads": dict(self.cell_loads),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StepResult:
        return cls(
            message=d.get("msg", ""),
            game_over=bool(d.get("gameOver", False)),
            failure=bool(d.get("failure", False)),
            completed=bool(d.get("completed", False)),
            energy_consumed=float(d.get("energyConsumed", 0.0)),
            total_energy_consumed=float(d.get("totalEnergyConsumed", 0.0)),
            energy_left=float(d.get("energyLeft", 0.0)),
            uncovered_minions=list(d.get("uncoveredMinions", [])),
            cells_should_be_on=list(d.get("cellsShouldBeOn", [])),
            functional_cell_ids=list(d.get("functionalCellIds", [])),
            cell_loads={k: float(v) for k, v in d.get("cellLoads", {}).items()},
        )


@dataclass
class StepRecord:
    """Self-contained snapshot of a session at one step index."""

    scenario_state: ScenarioState
    physical_map: PhysicalMap
    config: GameConfig
    total_energy_consumed: float = 0.0
    step_index: int = 0
    map_radius: float = 80.0
    last_result: StepResult | None = None

    @property
    def is_terminal(self) -> bool:
        """True if the recorded step ended the game (failure or completion)."""
        return self.last_result is not None and self.last_result.game_over

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenarioState": self.scenario_state.to_dict(),
            "physicalMap": self.physical_map.to_dict(),
            "config": self.config.to_dict(),
            "totalEnergyConsumed": self.total_energy_consumed,
            "currentStep": self.step_index,
            "mapRadius": self.map_radius,
            "lastResult": self.last_result.to_dict() if self.last_result else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StepRecord:
        last = d.get("lastResult")
        return cls(
            scenario_state=ScenarioState.from_dict(d["scenarioState"]),
            physical_map=PhysicalMap.from_dict(d["physicalMap"]),
            config=GameConfig.from_dict(d.get("config") or {}),
            total_energy_consumed=float(d.get("totalEnergyConsumed", 0.0)),
            step_index=int(d.get("currentStep", 0)),
            map_radius=float(d.get("mapRadius", 80.0)),
            last_result=StepResult.from_dict(last) if last else None,
        )
