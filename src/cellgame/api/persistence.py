"""
Append-only step history storage.

Each session owns an ordered list of StepRecords indexed 0..N plus the
initial snapshot that restart re-derives record 0 from. Records are stored
as zlib-compressed JSON blobs, so every record is a self-contained
snapshot and reading one never aliases live state. The same blobs back a
small library of named scenarios that players save and start games from.

Two backends share the ``StepStore`` interface: ``MemoryStepStore`` for
tests and throwaway servers, and ``SQLiteStepStore`` for durable play.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import zlib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import numpy as np

from cellgame.core.scenario import StepRecord

logger = logging.getLogger(__name__)


class SnapshotIntegrityError(ValueError):
    """A stored snapshot is missing or cannot be decoded."""


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------

def _json_fallback(obj: Any) -> Any:
    """Handle numpy types and other non-JSON-serializable objects."""
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def compress_record(record: StepRecord) -> bytes:
    """Serialize a record to zlib-compressed JSON bytes."""
    json_bytes = json.dumps(record.to_dict(), default=_json_fallback).encode("utf-8")
    return zlib.compress(json_bytes, level=6)


def restore_record(blob: bytes) -> StepRecord:
    """Decompress and rebuild a record.

    Raises:
        SnapshotIntegrityError: if the blob is damaged or incomplete.
    """
    if not blob:
        raise SnapshotIntegrityError("Empty snapshot blob")
    try:
        raw = json.loads(zlib.decompress(blob).decode("utf-8"))
        return StepRecord.from_dict(raw)
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise SnapshotIntegrityError(f"Corrupt snapshot: {exc}") from exc


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class StepStore(ABC):
    """Ordered, append-only step records per session."""

    @abstractmethod
    def create_session(
        self, session_id: str, name: str, difficulty: str | None, initial: StepRecord,
    ) -> None:
        """Register a session with its initial snapshot (no records yet)."""

    @abstractmethod
    def replace_initial(self, session_id: str, initial: StepRecord, difficulty: str | None) -> None:
        """Swap the initial snapshot (generate / change difficulty)."""

    @abstractmethod
    def load_initial(self, session_id: str) -> StepRecord:
        """Return the initial snapshot; KeyError if the session is unknown."""

    @abstractmethod
    def indices(self, session_id: str) -> list[int]:
        """Stored step indices, ascending."""

    @abstractmethod
    def _write(self, session_id: str, index: int, blob: bytes) -> None: ...

    @abstractmethod
    def _read(self, session_id: str, index: int) -> bytes | None: ...

    @abstractmethod
    def truncate_from(self, session_id: str, index: int) -> int:
        """Delete every record with step index >= ``index``; return how many."""

    @abstractmethod
    def has_session(self, session_id: str) -> bool: ...

    @abstractmethod
    def list_sessions(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def delete_session(self, session_id: str) -> None: ...

    # ---- Saved scenario library ----

    @abstractmethod
    def save_scenario(self, name: str, record: StepRecord) -> None:
        """Store a named snapshot, replacing any scenario of that name."""

    @abstractmethod
    def load_scenario(self, name: str) -> StepRecord:
        """Return a saved snapshot; KeyError if there is none by that name."""

    @abstractmethod
    def list_scenarios(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def delete_scenario(self, name: str) -> None:
        """Remove a saved snapshot; KeyError if there is none by that name."""

    def close(self) -> None:
        """Release backend resources."""

    # ---- Shared behaviour ----

    def append(self, session_id: str, record: StepRecord) -> None:
        """Append a record; its index must directly follow the latest one."""
        if not self.has_session(session_id):
            raise KeyError(f"Session '{session_id}' not found")
        existing = self.indices(session_id)
        expected = existing[-1] + 1 if existing else 0
        if record.step_index != expected:
            raise ValueError(
                f"Out-of-order append for session '{session_id}': "
                f"got step {record.step_index}, expected {expected}"
            )
        self._write(session_id, record.step_index, compress_record(record))

    def read(self, session_id: str, index: int) -> StepRecord:
        """Read one record by index."""
        blob = self._read(session_id, index)
        if blob is None:
            raise KeyError(f"No step {index} for session '{session_id}'")
        return restore_record(blob)

    def latest(self, session_id: str) -> StepRecord | None:
        """Highest-indexed record, or None if the history is empty."""
        existing = self.indices(session_id)
        if not existing:
            return None
        return self.read(session_id, existing[-1])


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryStepStore(StepStore):
    """Dict-backed store. Nothing survives the process."""

    def __init__(self) -> None:
        self._meta: dict[str, dict[str, Any]] = {}
        self._initial: dict[str, bytes] = {}
        self._records: dict[str, dict[int, bytes]] = {}
        self._scenarios: dict[str, dict[str, Any]] = {}

    def create_session(self, session_id, name, difficulty, initial):
        now = _now()
        self._meta[session_id] = {
            "id": session_id, "name": name, "difficulty": difficulty,
            "created_at": now, "updated_at": now,
        }
        self._initial[session_id] = compress_record(initial)
        self._records[session_id] = {}

    def replace_initial(self, session_id, initial, difficulty):
        if session_id not in self._meta:
            raise KeyError(f"Session '{session_id}' not found")
        self._initial[session_id] = compress_record(initial)
        self._meta[session_id]["difficulty"] = difficulty
        self._meta[session_id]["updated_at"] = _now()

    def load_initial(self, session_id):
        if session_id not in self._initial:
            raise KeyError(f"Session '{session_id}' not found")
        return restore_record(self._initial[session_id])

    def indices(self, session_id):
        return sorted(self._records.get(session_id, {}))

    def _write(self, session_id, index, blob):
        self._records[session_id][index] = blob
        self._meta[session_id]["updated_at"] = _now()

    def _read(self, session_id, index):
        return self._records.get(session_id, {}).get(index)

    def truncate_from(self, session_id, index):
        records = self._records.get(session_id, {})
        doomed = [i for i in records if i >= index]
        for i in doomed:
            del records[i]
        return len(doomed)

    def has_session(self, session_id):
        return session_id in self._meta

    def list_sessions(self):
        result = []
        for sid, meta in self._meta.items():
            existing = self.indices(sid)
            result.append({**meta, "current_step": existing[-1] if existing else 0})
        return result

    def delete_session(self, session_id):
        self._meta.pop(session_id, None)
        self._initial.pop(session_id, None)
        self._records.pop(session_id, None)

    def save_scenario(self, name, record):
        self._scenarios[name] = {
            "name": name,
            "step_index": record.step_index,
            "created_at": _now(),
            "blob": compress_record(record),
        }

    def load_scenario(self, name):
        if name not in self._scenarios:
            raise KeyError(f"Scenario '{name}' not found")
        return restore_record(self._scenarios[name]["blob"])

    def list_scenarios(self):
        rows = [
            {k: v for k, v in entry.items() if k != "blob"}
            for entry in self._scenarios.values()
        ]
        return sorted(rows, key=lambda r: r["name"])

    def delete_scenario(self, name):
        if self._scenarios.pop(name, None) is None:
            raise KeyError(f"Scenario '{name}' not found")


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        difficulty TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        initial_blob BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS step_records (
        session_id TEXT NOT NULL,
        step_index INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        record_blob BLOB NOT NULL,
        PRIMARY KEY (session_id, step_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scenarios (
        name TEXT PRIMARY KEY,
        step_index INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        record_blob BLOB NOT NULL
    )
    """,
)


class SQLiteStepStore(StepStore):
    """SQLite-backed step history.

    Thread-safety: one connection opened with ``check_same_thread=False``
    and guarded by a lock, so FastAPI's thread pool can share it.
    Errors on write propagate; the caller's step transaction then aborts
    before live state changes.
    """

    def __init__(self, db_path: str = "data/cellgame.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        for statement in _SCHEMA:
            self._conn.execute(statement)
        self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self._lock:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # ---- Write operations ----

    def create_session(self, session_id, name, difficulty, initial):
        now = _now()
        with self._lock:
            self._conn.execute("DELETE FROM step_records WHERE session_id = ?", (session_id,))
            self._conn.execute(
                """
                INSERT INTO sessions (id, name, difficulty, created_at, updated_at, initial_blob)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    difficulty = excluded.difficulty,
                    updated_at = excluded.updated_at,
                    initial_blob = excluded.initial_blob
                """,
                (session_id, name, difficulty, now, now, compress_record(initial)),
            )
            self._conn.commit()

    def replace_initial(
        self, session_id: str, initial: StepRecord, difficulty: str | None,
    ) -> None:
        updated = self._execute(
            "UPDATE sessions SET initial_blob = ?, difficulty = ?, updated_at = ? WHERE id = ?",
            (compress_record(initial), difficulty, _now(), session_id),
        )
        if updated == 0:
            raise KeyError(f"Session '{session_id}' not found")

    def _write(self, session_id: str, index: int, blob: bytes) -> None:
        now = _now()
        with self._lock:
            self._conn.execute(
                "INSERT INTO step_records (session_id, step_index, created_at, record_blob) "
                "VALUES (?, ?, ?, ?)",
                (session_id, index, now, blob),
            )
            self._conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id),
            )
            self._conn.commit()

    def truncate_from(self, session_id: str, index: int) -> int:
        return self._execute(
            "DELETE FROM step_records WHERE session_id = ? AND step_index >= ?",
            (session_id, index),
        )

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM step_records WHERE session_id = ?", (session_id,))
            self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            self._conn.commit()

    def save_scenario(self, name: str, record: StepRecord) -> None:
        self._execute(
            """
            INSERT INTO scenarios (name, step_index, created_at, record_blob)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                step_index = excluded.step_index,
                created_at = excluded.created_at,
                record_blob = excluded.record_blob
            """,
            (name, record.step_index, _now(), compress_record(record)),
        )

    def delete_scenario(self, name: str) -> None:
        if self._execute("DELETE FROM scenarios WHERE name = ?", (name,)) == 0:
            raise KeyError(f"Scenario '{name}' not found")

    # ---- Read operations ----

    def load_initial(self, session_id: str) -> StepRecord:
        row = self._fetchone("SELECT initial_blob FROM sessions WHERE id = ?", (session_id,))
        if row is None:
            raise KeyError(f"Session '{session_id}' not found")
        return restore_record(row[0])

    def indices(self, session_id: str) -> list[int]:
        rows = self._fetchall(
            "SELECT step_index FROM step_records WHERE session_id = ? ORDER BY step_index",
            (session_id,),
        )
        return [r[0] for r in rows]

    def _read(self, session_id: str, index: int) -> bytes | None:
        row = self._fetchone(
            "SELECT record_blob FROM step_records WHERE session_id = ? AND step_index = ?",
            (session_id, index),
        )
        return None if row is None else row[0]

    def has_session(self, session_id: str) -> bool:
        return self._fetchone("SELECT 1 FROM sessions WHERE id = ?", (session_id,)) is not None

    def list_sessions(self) -> list[dict[str, Any]]:
        """Return metadata for all persisted sessions (no blobs)."""
        rows = self._fetchall(
            """
            SELECT s.id, s.name, s.difficulty, s.created_at, s.updated_at,
                   COALESCE(MAX(r.step_index), 0)
            FROM sessions s LEFT JOIN step_records r ON r.session_id = s.id
            GROUP BY s.id
            ORDER BY s.created_at DESC
            """,
        )
        return [
            {
                "id": r[0],
                "name": r[1],
                "difficulty": r[2],
                "created_at": r[3],
                "updated_at": r[4],
                "current_step": r[5],
            }
            for r in rows
        ]

    def load_scenario(self, name: str) -> StepRecord:
        row = self._fetchone("SELECT record_blob FROM scenarios WHERE name = ?", (name,))
        if row is None:
            raise KeyError(f"Scenario '{name}' not found")
        return restore_record(row[0])

    def list_scenarios(self) -> list[dict[str, Any]]:
        rows = self._fetchall(
            "SELECT name, step_index, created_at FROM scenarios ORDER BY name",
        )
        return [{"name": r[0], "step_index": r[1], "created_at": r[2]} for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def open_store(db_path: str | None) -> StepStore:
    """Open the SQLite store, or fall back to memory when unavailable.

    ``None`` selects the in-memory store directly.
    """
    if db_path is None:
        return MemoryStepStore()
    try:
        return SQLiteStepStore(db_path)
    except sqlite3.Error:
        logger.warning(
            "Failed to open SQLite database at %s, falling back to in-memory only",
            db_path,
            exc_info=True,
        )
        return MemoryStepStore()
