"""
Session manager for game sessions backed by an append-only step store.

Each session owns a linear history of StepRecords (0..N) plus the initial
snapshot that restart re-derives record 0 from. The live record kept in
memory is always equal to the latest stored record: every mutation writes
to the store first and only then swaps the live record, so an exception
anywhere in a step leaves both untouched.

Sessions created by an earlier process are resumed lazily from the store
on first access.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

import numpy as np
import yaml

from cellgame.api.persistence import (
    SnapshotIntegrityError,
    compress_record,
    open_store,
    restore_record,
)
from cellgame.core.config import GameConfig
from cellgame.core.evaluation import energy_totals, evaluate_coverage, resolve_step_outcome
from cellgame.core.map_generators import generate_scenario
from cellgame.core.movement import move_minions
from cellgame.core.scenario import ScenarioState, StepRecord, StepResult
from cellgame.experiment.presets import get_preset

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_GAME_OVER = "game_over"
STATUS_COMPLETED = "completed"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _clone(record: StepRecord) -> StepRecord:
    """Deep copy through the storage codec so no state is shared."""
    return restore_record(compress_record(record))


def _as_initial(record: StepRecord) -> StepRecord:
    return replace(_clone(record), step_index=0, total_energy_consumed=0.0, last_result=None)


def _decode_snapshot(data: Any) -> StepRecord:
    """Build a record from its dict form, raising SnapshotIntegrityError if malformed."""
    if not isinstance(data, dict):
        raise SnapshotIntegrityError(f"Snapshot must be a mapping, got {type(data).__name__}")
    try:
        return StepRecord.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SnapshotIntegrityError(f"Invalid snapshot: {exc}") from exc


def _scenario_name(name: str | None) -> str:
    if not name:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        return f"scenario_{stamp}"
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name.strip())
    if not cleaned.strip("._"):
        raise ValueError(f"Invalid scenario name: {name!r}")
    return cleaned


@dataclass
class GameSession:
    """A player's game: identity plus the live (latest) step record."""

    id: str
    name: str
    record: StepRecord
    difficulty: str | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def step_index(self) -> int:
        return self.record.step_index

    @property
    def config(self) -> GameConfig:
        return self.record.config

    @property
    def total_energy_consumed(self) -> float:
        return energy_totals(self.record.config, self.record.total_energy_consumed)[0]

    @property
    def energy_left(self) -> float:
        return energy_totals(self.record.config, self.record.total_energy_consumed)[1]

    @property
    def status(self) -> str:
        result = self.record.last_result
        if result is None or not result.game_over:
            return STATUS_ACTIVE
        return STATUS_GAME_OVER if result.failure else STATUS_COMPLETED


class SessionManager:
    """Manages game sessions and their step histories.

    Parameters
    ----------
    db_path : str | None
        Path to the SQLite database file. ``None`` keeps histories in
        memory only. Default ``"data/cellgame.db"``.
    """

    def __init__(self, db_path: str | None = "data/cellgame.db"):
        self.sessions: dict[str, GameSession] = {}
        self._lock = threading.Lock()
        self._store = open_store(db_path)

        # Metadata for sessions persisted but not yet loaded into memory
        self._session_index: dict[str, dict[str, Any]] = {}
        self._load_index()

        # Compressed step-0 snapshots per difficulty, shared by all players
        self._difficulty_cache: dict[str, bytes] = {}

    def _load_index(self) -> None:
        for row in self._store.list_sessions():
            self._session_index[row["id"]] = row

    # ------------------------------------------------------------------
    # Scenario sources
    # ------------------------------------------------------------------

    def _difficulty_scenario(self, difficulty: str) -> StepRecord:
        """Step-0 record for a difficulty. Raises KeyError if unknown."""
        blob = self._difficulty_cache.get(difficulty)
        if blob is None:
            config = get_preset(difficulty)
            record = generate_scenario(config)
            blob = compress_record(record)
            self._difficulty_cache[difficulty] = blob
            logger.info("Generated '%s' scenario (seed=%s)", difficulty, config.random_seed)
        return restore_record(blob)

    @staticmethod
    def _movement_rng(config: GameConfig, step_index: int) -> np.random.Generator:
        # Reseed deterministically: seed + step index
        if config.random_seed is not None:
            return np.random.default_rng(config.random_seed + step_index)
        return np.random.default_rng()

    def _reset_history(
        self, session: GameSession, initial: StepRecord, difficulty: str | None,
    ) -> None:
        """Replace the initial snapshot and leave record 0 as the only record."""
        initial = _as_initial(initial)
        self._store.replace_initial(session.id, initial, difficulty)
        self._store.truncate_from(session.id, 0)
        self._store.append(session.id, initial)
        session.record = _clone(initial)
        session.difficulty = difficulty

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_session(
        self,
        player_id: str | None = None,
        config: GameConfig | None = None,
        difficulty: str | None = None,
        snapshot: StepRecord | dict[str, Any] | None = None,
        name: str | None = None,
        scenario: str | None = None,
    ) -> GameSession:
        """Create (or replace) a session and write its record 0.

        The scenario comes from ``snapshot`` if given, else from the saved
        ``scenario`` of that name, else from the ``difficulty`` preset,
        else is generated from ``config`` (defaults when omitted).

        Raises:
            KeyError: unknown difficulty or saved scenario.
            SnapshotIntegrityError: malformed snapshot.
        """
        if snapshot is not None:
            if not isinstance(snapshot, StepRecord):
                snapshot = _decode_snapshot(snapshot)
            initial = _as_initial(snapshot)
        elif scenario is not None:
            initial = _as_initial(self._store.load_scenario(scenario))
        elif difficulty is not None:
            initial = self._difficulty_scenario(difficulty)
        else:
            initial = generate_scenario(config or GameConfig())

        session_id = player_id or f"guest_{uuid.uuid4().hex[:8]}"
        name = name or session_id

        self._store.create_session(session_id, name, difficulty, initial)
        self._store.append(session_id, initial)

        session = GameSession(
            id=session_id, name=name, record=_clone(initial), difficulty=difficulty,
        )
        with self._lock:
            self.sessions[session_id] = session
            self._session_index.pop(session_id, None)
        logger.info("Created session %s (difficulty=%s)", session_id, difficulty)
        return session

    def get_session(self, session_id: str) -> GameSession:
        """Get a session by ID. Lazy-loads from the store if needed.

        Raises KeyError if not found in memory or the store.
        """
        with self._lock:
            if session_id in self.sessions:
                return self.sessions[session_id]

            if session_id not in self._session_index and not self._store.has_session(session_id):
                raise KeyError(f"Session '{session_id}' not found")

            session = self._resume(session_id)
            self.sessions[session_id] = session
            self._session_index.pop(session_id, None)
            return session

    def _resume(self, session_id: str) -> GameSession:
        meta = self._session_index.get(session_id)
        if meta is None:
            meta = next(
                (row for row in self._store.list_sessions() if row["id"] == session_id), {},
            )

        record = self._store.latest(session_id)
        if record is None:
            # Interrupted before record 0 was written
            record = self._store.load_initial(session_id)
            self._store.append(session_id, record)

        logger.info("Resumed session %s at step %d", session_id, record.step_index)
        return GameSession(
            id=session_id,
            name=meta.get("name") or session_id,
            record=record,
            difficulty=meta.get("difficulty"),
        )

    def step(self, session_id: str, on_ids: list[str]) -> dict[str, Any]:
        """Play one turn: switch cells, move minions, evaluate, record.

        Cells listed in ``on_ids`` are switched on and every other cell
        off; unknown ids are ignored. A session whose last step ended the
        game re-reports that result without simulating.

        Raises:
            KeyError: unknown session.
            SnapshotIntegrityError: the previous record is missing or damaged.
        """
        session = self.get_session(session_id)
        with session.lock:
            previous = self._store.latest(session_id)
            if previous is None:
                raise SnapshotIntegrityError(
                    f"Session '{session_id}' has no previous step record"
                )
            if previous.is_terminal:
                return self._step_response(session, previous)

            # ``previous`` is freshly decoded, so it can be worked on in place
            config = previous.config
            scenario = previous.scenario_state
            wanted = set(on_ids)
            unknown = wanted - scenario.cell_ids()
            if unknown:
                logger.info(
                    "Session %s: ignoring unknown cell ids %s", session_id, sorted(unknown),
                )
            for cell in scenario.all_cells():
                cell.active = cell.id in wanted

            next_index = previous.step_index + 1
            rng = self._movement_rng(config, next_index)
            moved = move_minions(
                scenario.minions, scenario.levels, config, previous.physical_map, rng,
            )

            evaluation = evaluate_coverage(moved, scenario.levels, config)
            result = resolve_step_outcome(
                evaluation, previous.total_energy_consumed, next_index, config,
            )

            hinted = set(result.cells_should_be_on)
            for cell in scenario.all_cells():
                cell.should_be_on = cell.id in hinted
                cell.capacity_consumed = evaluation.cell_loads.get(cell.id, 0.0)

            record = StepRecord(
                scenario_state=ScenarioState(
                    levels=scenario.levels, minions=evaluation.minion_states,
                ),
                physical_map=previous.physical_map,
                config=config,
                total_energy_consumed=result.total_energy_consumed,
                step_index=next_index,
                map_radius=previous.map_radius,
                last_result=result,
            )
            self._store.append(session_id, record)
            session.record = record

            if result.game_over:
                logger.info("Session %s ended at step %d: %s",
                            session_id, next_index, result.message)
            return self._step_response(session, record)

    def _step_response(self, session: GameSession, record: StepRecord) -> dict[str, Any]:
        result = record.last_result or StepResult(message="")
        response = result.to_dict()
        response.update({
            "sessionId": session.id,
            "status": session.status,
            "currentStep": record.step_index,
            "scenarioState": record.scenario_state.to_dict(),
        })
        return response

    def undo(self, session_id: str) -> GameSession:
        """Drop the latest record and return to the one before it.

        Raises ValueError at step 0.
        """
        session = self.get_session(session_id)
        with session.lock:
            existing = self._store.indices(session_id)
            if len(existing) <= 1:
                raise ValueError("Nothing to undo: session is at step 0")
            target = self._store.read(session_id, existing[-2])
            self._store.truncate_from(session_id, existing[-1])
            session.record = target
        return session

    def restart(self, session_id: str) -> GameSession:
        """Return to record 0, re-derived from the initial snapshot."""
        session = self.get_session(session_id)
        with session.lock:
            initial = self._store.load_initial(session_id)
            self._store.truncate_from(session_id, 0)
            self._store.append(session_id, initial)
            session.record = initial
        return session

    def generate(
        self, session_id: str, overrides: dict[str, Any] | None = None,
    ) -> GameSession:
        """Generate a fresh scenario from the session's config plus overrides.

        A new seed is drawn unless ``RANDOM_SEED`` is given, so every call
        produces a different map while the history stays replayable.
        Raises ValueError for invalid overrides.
        """
        session = self.get_session(session_id)
        with session.lock:
            overrides = dict(overrides or {})
            if "RANDOM_SEED" not in overrides:
                overrides["RANDOM_SEED"] = int(np.random.default_rng().integers(2**31 - 1))
            config = session.config.with_overrides(overrides)
            self._reset_history(session, generate_scenario(config), None)
        return session

    def change_difficulty(self, session_id: str, difficulty: str) -> GameSession:
        """Switch to a difficulty preset. Raises KeyError if unknown."""
        session = self.get_session(session_id)
        with session.lock:
            initial = self._difficulty_scenario(difficulty)
            self._reset_history(session, initial, difficulty)
        return session

    def get_state(self, session_id: str) -> dict[str, Any]:
        """Player view of the live record. The physical map is left out."""
        session = self.get_session(session_id)
        record = session.record
        config = record.config
        return {
            "sessionId": session.id,
            "name": session.name,
            "difficulty": session.difficulty,
            "status": session.status,
            "gameOver": record.is_terminal,
            "currentStep": record.step_index,
            "targetSteps": config.target_steps,
            "totalEnergyConsumed": session.total_energy_consumed,
            "energyLeft": session.energy_left,
            "mapRadius": record.map_radius,
            "config": config.to_dict(),
            "scenarioState": record.scenario_state.to_dict(),
            "lastResult": record.last_result.to_dict() if record.last_result else None,
        }

    def export_layout(self, session_id: str) -> dict[str, Any]:
        """Cell layout of the session's map, one entry per level."""
        session = self.get_session(session_id)
        record = session.record
        config = record.config
        levels = []
        for level in record.scenario_state.levels:
            levels.append({
                "id": level.id,
                "elevation": level.id * config.level_distance,
                "cells": [
                    {
                        "id": c.id,
                        "type": c.kind,
                        "q": c.q,
                        "r": c.r,
                        "x": c.x,
                        "z": c.z,
                        "radius": config.radius_for(c.kind),
                    }
                    for c in level.cells
                ],
            })
        return {
            "mapRadius": record.map_radius,
            "levelDistance": config.level_distance,
            "levels": levels,
        }

    def export_layout_yaml(self, session_id: str) -> str:
        """The cell layout as a YAML document."""
        return yaml.safe_dump(self.export_layout(session_id), sort_keys=False)

    # ------------------------------------------------------------------
    # Saved scenarios
    # ------------------------------------------------------------------

    def save_scenario(
        self,
        name: str | None = None,
        session_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> str:
        """Save a named scenario and return the name it was stored under.

        The snapshot is either a session's live record or an uploaded
        ``data`` dict; exactly one must be given. Unsafe characters in the
        name are replaced and a timestamped name is used when it is empty.

        Raises:
            KeyError: unknown session.
            ValueError: neither or both sources given, or a bad name.
            SnapshotIntegrityError: malformed ``data``.
        """
        if (session_id is None) == (data is None):
            raise ValueError("Give exactly one of a session id or snapshot data")
        stored_name = _scenario_name(name)
        if session_id is not None:
            session = self.get_session(session_id)
            with session.lock:
                record = _clone(session.record)
        else:
            record = _decode_snapshot(data)
        self._store.save_scenario(stored_name, record)
        logger.info("Saved scenario '%s' (step %d)", stored_name, record.step_index)
        return stored_name

    def list_scenarios(self) -> list[dict[str, Any]]:
        return self._store.list_scenarios()

    def load_scenario(self, name: str) -> dict[str, Any]:
        """Full snapshot of a saved scenario. Raises KeyError if unknown."""
        return self._store.load_scenario(name).to_dict()

    def delete_scenario(self, name: str) -> None:
        self._store.delete_scenario(name)
        logger.info("Deleted scenario '%s'", name)

    def list_sessions(self) -> list[dict[str, Any]]:
        """Metadata for every stored session."""
        return self._store.list_sessions()

    def delete_session(self, session_id: str) -> None:
        """Delete a session and its history. Raises KeyError if unknown."""
        with self._lock:
            in_memory = self.sessions.pop(session_id, None) is not None
            self._session_index.pop(session_id, None)
            if not in_memory and not self._store.has_session(session_id):
                raise KeyError(f"Session '{session_id}' not found")
            self._store.delete_session(session_id)

    def close(self) -> None:
        self._store.close()
