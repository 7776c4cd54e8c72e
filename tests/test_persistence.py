"""
Tests for step history persistence.

Tests the record codec, both StepStore backends through one shared suite
(they must behave identically), SQLite durability across connections and
the open_store fallback.
"""

from __future__ import annotations

import json
import zlib

import numpy as np
import pytest

from cellgame.api.persistence import (
    MemoryStepStore,
    SnapshotIntegrityError,
    SQLiteStepStore,
    compress_record,
    open_store,
    restore_record,
)
from cellgame.core.config import GameConfig
from cellgame.core.map_generators import generate_scenario
from cellgame.core.scenario import StepRecord, StepResult


# =====================================================================
# Helpers
# =====================================================================

def _make_record(step_index: int = 0, seed: int = 42) -> StepRecord:
    config = GameConfig.from_dict({
        "RANDOM_SEED": seed,
        "MAP_LEVELS": 1,
        "CAPACITY_CELLS_COUNT": 7,
        "HUMAN": {"COUNT": 2},
        "HUMANOID": {"ENABLED": False},
        "DOG_ROBOT": {"ENABLED": False},
        "TURTLE_BOT": {"ENABLED": False},
        "DRONE": {"ENABLED": False},
    })
    record = generate_scenario(config)
    record.step_index = step_index
    if step_index:
        record.total_energy_consumed = float(step_index)
        record.last_result = StepResult(message="Step completed successfully",
                                        total_energy_consumed=float(step_index))
    return record


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStepStore()
    else:
        s = SQLiteStepStore(str(tmp_path / "steps.db"))
    yield s
    s.close()


@pytest.fixture
def session(store):
    store.create_session("s1", "Player One", None, _make_record(0))
    return store


# =====================================================================
# Codec
# =====================================================================

class TestRecordCodec:
    def test_roundtrip(self):
        record = _make_record(3)
        restored = restore_record(compress_record(record))
        assert restored.to_dict() == record.to_dict()

    def test_blob_is_compressed_json(self):
        blob = compress_record(_make_record())
        data = json.loads(zlib.decompress(blob))
        assert data["currentStep"] == 0
        assert "physicalMap" in data

    def test_numpy_values_serialised(self):
        record = _make_record()
        minion = record.scenario_state.minions[0]
        minion.x = np.float64(1.5)
        minion.level = np.int64(0)
        restored = restore_record(compress_record(record))
        assert restored.scenario_state.minions[0].x == 1.5

    def test_empty_blob_rejected(self):
        with pytest.raises(SnapshotIntegrityError):
            restore_record(b"")

    def test_garbage_rejected(self):
        with pytest.raises(SnapshotIntegrityError):
            restore_record(b"not a snapshot")

    def test_incomplete_record_rejected(self):
        blob = zlib.compress(json.dumps({"currentStep": 2}).encode("utf-8"))
        with pytest.raises(SnapshotIntegrityError):
            restore_record(blob)

    def test_bad_config_rejected(self):
        data = _make_record().to_dict()
        data["config"]["HUMAN"] = "many"
        blob = zlib.compress(json.dumps(data).encode("utf-8"))
        with pytest.raises(SnapshotIntegrityError):
            restore_record(blob)

    def test_integrity_error_is_value_error(self):
        assert issubclass(SnapshotIntegrityError, ValueError)


# =====================================================================
# Store behaviour (both backends)
# =====================================================================

class TestSessionRegistry:
    def test_has_session(self, session):
        assert session.has_session("s1")
        assert not session.has_session("nope")

    def test_new_session_has_no_records(self, session):
        assert session.indices("s1") == []
        assert session.latest("s1") is None

    def test_load_initial(self, session):
        initial = session.load_initial("s1")
        assert initial.step_index == 0
        assert initial.to_dict() == _make_record(0).to_dict()

    def test_load_initial_unknown(self, store):
        with pytest.raises(KeyError):
            store.load_initial("nope")

    def test_replace_initial(self, session):
        session.replace_initial("s1", _make_record(0, seed=7), "hard")
        assert session.load_initial("s1").config.random_seed == 7
        assert session.list_sessions()[0]["difficulty"] == "hard"

    def test_replace_initial_unknown(self, store):
        with pytest.raises(KeyError):
            store.replace_initial("nope", _make_record(0), None)

    def test_list_sessions(self, session):
        session.append("s1", _make_record(0))
        session.append("s1", _make_record(1))
        rows = session.list_sessions()
        assert len(rows) == 1
        assert rows[0]["id"] == "s1"
        assert rows[0]["name"] == "Player One"
        assert rows[0]["current_step"] == 1

    def test_delete_session(self, session):
        session.append("s1", _make_record(0))
        session.delete_session("s1")
        assert not session.has_session("s1")
        assert session.indices("s1") == []

    def test_recreate_clears_history(self, session):
        session.append("s1", _make_record(0))
        session.append("s1", _make_record(1))
        session.create_session("s1", "Player One", "easy", _make_record(0))
        assert session.indices("s1") == []


class TestAppend:
    def test_contiguous_indices(self, session):
        for i in range(4):
            session.append("s1", _make_record(i))
        assert session.indices("s1") == [0, 1, 2, 3]

    def test_gap_rejected(self, session):
        session.append("s1", _make_record(0))
        with pytest.raises(ValueError):
            session.append("s1", _make_record(2))
        assert session.indices("s1") == [0]

    def test_first_record_must_be_zero(self, session):
        with pytest.raises(ValueError):
            session.append("s1", _make_record(1))

    def test_duplicate_rejected(self, session):
        session.append("s1", _make_record(0))
        with pytest.raises(ValueError):
            session.append("s1", _make_record(0))

    def test_unknown_session_rejected(self, store):
        with pytest.raises(KeyError):
            store.append("nope", _make_record(0))


class TestRead:
    def test_read_returns_equal_record(self, session):
        record = _make_record(0)
        session.append("s1", record)
        assert session.read("s1", 0).to_dict() == record.to_dict()

    def test_read_is_a_copy(self, session):
        session.append("s1", _make_record(0))
        first = session.read("s1", 0)
        first.scenario_state.minions[0].x = 9999.0
        assert session.read("s1", 0).scenario_state.minions[0].x != 9999.0

    def test_read_missing(self, session):
        with pytest.raises(KeyError):
            session.read("s1", 5)

    def test_latest(self, session):
        session.append("s1", _make_record(0))
        session.append("s1", _make_record(1))
        latest = session.latest("s1")
        assert latest.step_index == 1
        assert latest.last_result.message == "Step completed successfully"


class TestTruncate:
    def test_truncate_from(self, session):
        for i in range(4):
            session.append("s1", _make_record(i))
        removed = session.truncate_from("s1", 2)
        assert removed == 2
        assert session.indices("s1") == [0, 1]

    def test_append_after_truncate(self, session):
        for i in range(3):
            session.append("s1", _make_record(i))
        session.truncate_from("s1", 1)
        session.append("s1", _make_record(1))
        assert session.indices("s1") == [0, 1]

    def test_truncate_everything(self, session):
        session.append("s1", _make_record(0))
        session.truncate_from("s1", 0)
        assert session.indices("s1") == []


class TestScenarioLibrary:
    def test_save_and_load(self, store):
        store.save_scenario("alpha", _make_record(2))
        loaded = store.load_scenario("alpha")
        assert loaded.to_dict() == _make_record(2).to_dict()

    def test_list_sorted_without_blobs(self, store):
        store.save_scenario("beta", _make_record(0))
        store.save_scenario("alpha", _make_record(3))
        rows = store.list_scenarios()
        assert [r["name"] for r in rows] == ["alpha", "beta"]
        assert rows[0]["step_index"] == 3
        assert set(rows[0]) == {"name", "step_index", "created_at"}

    def test_save_overwrites(self, store):
        store.save_scenario("alpha", _make_record(0))
        store.save_scenario("alpha", _make_record(4))
        assert len(store.list_scenarios()) == 1
        assert store.load_scenario("alpha").step_index == 4

    def test_load_unknown(self, store):
        with pytest.raises(KeyError):
            store.load_scenario("nope")

    def test_delete(self, store):
        store.save_scenario("alpha", _make_record(0))
        store.delete_scenario("alpha")
        assert store.list_scenarios() == []

    def test_delete_unknown(self, store):
        with pytest.raises(KeyError):
            store.delete_scenario("nope")

    def test_independent_of_sessions(self, session):
        session.save_scenario("alpha", _make_record(0))
        session.delete_session("s1")
        assert [r["name"] for r in session.list_scenarios()] == ["alpha"]


# =====================================================================
# SQLite specifics
# =====================================================================

class TestSQLiteDurability:
    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "durable.db")
        first = SQLiteStepStore(path)
        first.create_session("s1", "Player", "easy", _make_record(0))
        first.append("s1", _make_record(0))
        first.append("s1", _make_record(1))
        first.close()

        second = SQLiteStepStore(path)
        try:
            assert second.indices("s1") == [0, 1]
            assert second.latest("s1").total_energy_consumed == 1.0
            assert second.list_sessions()[0]["difficulty"] == "easy"
        finally:
            second.close()

    def test_sessions_isolated(self, tmp_path):
        store = SQLiteStepStore(str(tmp_path / "iso.db"))
        try:
            store.create_session("a", "A", None, _make_record(0))
            store.create_session("b", "B", None, _make_record(0))
            store.append("a", _make_record(0))
            store.append("a", _make_record(1))
            store.append("b", _make_record(0))
            store.truncate_from("a", 0)
            assert store.indices("a") == []
            assert store.indices("b") == [0]
        finally:
            store.close()


class TestOpenStore:
    def test_none_gives_memory(self):
        assert isinstance(open_store(None), MemoryStepStore)

    def test_sqlite_path(self, tmp_path):
        store = open_store(str(tmp_path / "x.db"))
        try:
            assert isinstance(store, SQLiteStepStore)
        finally:
            store.close()

    def test_unopenable_path_falls_back(self, tmp_path, caplog):
        with caplog.at_level("WARNING"):
            store = open_store(str(tmp_path))  # a directory, not a file
        assert isinstance(store, MemoryStepStore)
        assert "falling back" in caplog.text
