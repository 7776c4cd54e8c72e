"""
Coverage and capacity evaluation for one step.

Phase 1 assigns every minion to the nearest active cell on its level that
covers it, capacity cells before coverage cells. A minion with no such
cell loses service and ends the game; the evaluator then suggests cells
that would have served it.

Phase 2 (only if everybody is served) sums the assigned throughput per
cell and fails on the first cell, in map order, whose load exceeds the
throughput limit.

Energy is charged for every active cell whatever the outcome.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace

from cellgame.core.config import GameConfig
from cellgame.core.hex_layout import cell_covers
from cellgame.core.scenario import Cell, Level, Minion, StepResult

logger = logging.getLogger(__name__)

MSG_SUCCESS = "Step completed successfully"
MSG_OUT_OF_ENERGY = "Out of energy"
MSG_TARGET_REACHED = "Target reached: scenario completed"


@dataclass
class EvaluationResult:
    """Outcome of evaluating one step's coverage and capacity."""

    minion_states: list[Minion]
    energy_consumed: float
    failure: str | None = None
    uncovered_minions: list[str] = field(default_factory=list)
    cells_should_be_on: list[str] = field(default_factory=list)
    functional_cell_ids: list[str] = field(default_factory=list)
    cell_loads: dict[str, float] = field(default_factory=dict)
    assignments: dict[str, str] = field(default_factory=dict)
    overloaded_cell: str | None = None


def _nearest(cells: list[Cell], x: float, z: float) -> Cell | None:
    best: Cell | None = None
    best_d2 = math.inf
    for cell in cells:
        d2 = (cell.x - x) ** 2 + (cell.z - z) ** 2
        if d2 < best_d2:
            best, best_d2 = cell, d2
    return best


def _covering(minion: Minion, cells: list[Cell], config: GameConfig) -> list[Cell]:
    """Cells among ``cells`` covering the minion: capacity cells if any, else coverage cells."""
    covering = [c for c in cells if cell_covers(c, minion.x, minion.z, config)]
    capacity = [c for c in covering if c.is_capacity]
    return capacity or covering


def _serving_cell(minion: Minion, cells: list[Cell], config: GameConfig) -> Cell | None:
    """Nearest covering cell among ``cells``, capacity kind preferred."""
    return _nearest(_covering(minion, cells, config), minion.x, minion.z)


def evaluate_coverage(
    minions: list[Minion], levels: list[Level], config: GameConfig,
) -> EvaluationResult:
    """Evaluate coverage and capacity for the current cell activation.

    Pure: inputs are not modified; ``minion_states`` are copies with the
    ``covered`` flag set.
    """
    cells_by_level: dict[int, list[Cell]] = {lvl.id: lvl.cells for lvl in levels}
    all_cells = [c for lvl in levels for c in lvl.cells]
    active = [c for c in all_cells if c.active]

    energy_consumed = len(active) * config.cell_energy_cost
    result = EvaluationResult(
        minion_states=[],
        energy_consumed=energy_consumed,
        functional_cell_ids=[c.id for c in active],
        cell_loads={c.id: 0.0 for c in active},
    )

    # Phase 1: assignment
    suggestions: list[str] = []
    for minion in minions:
        level_cells = cells_by_level.get(minion.level, [])
        provider = _serving_cell(minion, [c for c in level_cells if c.active], config)
        if provider is None:
            result.minion_states.append(replace(minion, covered=False))
            result.uncovered_minions.append(minion.id)
            if result.failure is None:
                result.failure = f"Minion {minion.id} lost service!"
            for hint in _covering(minion, level_cells, config):
                if hint.id not in suggestions:
                    suggestions.append(hint.id)
            continue

        result.minion_states.append(replace(minion, covered=True))
        result.assignments[minion.id] = provider.id
        demand = config.minion_config(minion.minion_type).req_throughput
        result.cell_loads[provider.id] += demand

    result.cells_should_be_on = suggestions
    logger.debug(
        "Coverage: %d/%d minions served, %d active cells",
        len(minions) - len(result.uncovered_minions), len(minions), len(active),
    )

    # Phase 2: capacity, first overloaded cell in map order
    if not result.uncovered_minions:
        limit = config.cell_throughput_limit
        for cell in active:
            load = result.cell_loads[cell.id]
            if load > limit:
                result.failure = f"Cell {cell.id} overloaded ({load:.1f}/{limit:.1f} Mbps)"
                result.overloaded_cell = cell.id
                break

    return result


def _finite(value: float, default: float) -> float:
    return value if isinstance(value, (int, float)) and math.isfinite(value) else default


def energy_totals(config: GameConfig, total_consumed: float) -> tuple[float, float]:
    """Return (consumed, left) for a cumulative consumption figure.

    Non-finite inputs are clamped the same way as in a step outcome, so
    views of a damaged record stay JSON-serialisable.
    """
    consumed = _finite(total_consumed, 0.0)
    budget = _finite(config.total_energy, GameConfig.total_energy)
    return consumed, budget - consumed


def resolve_step_outcome(
    evaluation: EvaluationResult,
    previous_total: float,
    step_index: int,
    config: GameConfig,
) -> StepResult:
    """Combine an evaluation with the energy ledger into the step's result.

    Non-finite energy figures (e.g. from a damaged snapshot) are clamped:
    consumption to 0, the budget to the default budget.
    """
    energy = _finite(evaluation.energy_consumed, 0.0)
    previous_total, _ = energy_totals(config, previous_total)
    total, energy_left = energy_totals(config, previous_total + energy)

    failure = evaluation.failure is not None or energy_left <= 0
    completed = not failure and bool(config.target_steps) and step_index >= config.target_steps
    if evaluation.failure is not None:
        message = evaluation.failure
    elif failure:
        message = MSG_OUT_OF_ENERGY
    elif completed:
        message = MSG_TARGET_REACHED
    else:
        message = MSG_SUCCESS

    return StepResult(
        message=message,
        game_over=failure or completed,
        failure=failure,
        completed=completed,
        energy_consumed=energy,
        total_energy_consumed=total,
        energy_left=energy_left,
        uncovered_minions=list(evaluation.uncovered_minions) if failure else [],
        cells_should_be_on=list(evaluation.cells_should_be_on) if failure else [],
        functional_cell_ids=list(evaluation.functional_cell_ids),
        cell_loads=dict(evaluation.cell_loads),
    )
