"""Integration tests for the Cell Game REST API."""

import pytest
import yaml
from fastapi.testclient import TestClient

from cellgame.api.app import create_app


@pytest.fixture
def client():
    app = create_app()
    return TestClient(app)


def _create(client, **body) -> dict:
    resp = client.post("/api/game/sessions", json=body)
    assert resp.status_code == 200
    return resp.json()


def _active_cells(client, sid) -> list[str]:
    state = client.get(f"/api/game/sessions/{sid}/state").json()
    return [
        c["id"]
        for lvl in state["scenarioState"]["levels"]
        for c in lvl["cells"]
        if c["active"]
    ]


class TestHealthCheck:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestSessionLifecycle:
    def test_create_session_defaults(self, client):
        data = _create(client)
        assert data["id"].startswith("guest_")
        assert data["status"] == "active"
        assert data["current_step"] == 0
        assert data["energy_left"] == 1000.0

    def test_create_session_for_player(self, client):
        data = _create(client, player_id="alice", name="Alice")
        assert data["id"] == "alice"
        assert data["name"] == "Alice"

    def test_create_session_with_config(self, client):
        data = _create(client, config={"TOTAL_ENERGY": 50, "MAP_LEVELS": 1, "RANDOM_SEED": 4})
        assert data["config"]["TOTAL_ENERGY"] == 50.0
        assert data["config"]["MAP_LEVELS"] == 1

    def test_create_session_with_difficulty(self, client):
        data = _create(client, difficulty="medium")
        assert data["difficulty"] == "medium"
        assert data["config"]["TOTAL_ENERGY"] == 700.0

    def test_unknown_difficulty(self, client):
        resp = client.post("/api/game/sessions", json={"difficulty": "nightmare"})
        assert resp.status_code == 404

    def test_invalid_config(self, client):
        resp = client.post("/api/game/sessions", json={"config": {"COVERAGE_CELL_RADIUS": "wide"}})
        assert resp.status_code == 400

    def test_list_sessions(self, client):
        _create(client)
        _create(client)
        resp = client.get("/api/game/sessions")
        assert resp.status_code == 200
        assert len(resp.json()) >= 2

    def test_get_session(self, client):
        sid = _create(client, config={"RANDOM_SEED": 42})["id"]
        resp = client.get(f"/api/game/sessions/{sid}")
        assert resp.status_code == 200
        assert resp.json()["id"] == sid

    def test_get_nonexistent_session(self, client):
        resp = client.get("/api/game/sessions/nonexistent")
        assert resp.status_code == 404

    def test_delete_session(self, client):
        sid = _create(client)["id"]
        assert client.delete(f"/api/game/sessions/{sid}").json() == {"deleted": True}
        assert client.get(f"/api/game/sessions/{sid}").status_code == 404

    def test_delete_nonexistent_session(self, client):
        assert client.delete("/api/game/sessions/nonexistent").status_code == 404


class TestStepping:
    def test_step_response_shape(self, client):
        sid = _create(client, difficulty="easy")["id"]
        resp = client.post(f"/api/game/sessions/{sid}/step", json={"on": _active_cells(client, sid)})
        assert resp.status_code == 200
        data = resp.json()
        for key in (
            "msg", "gameOver", "uncoveredMinions", "cellsShouldBeOn", "functionalCellIds",
            "energyConsumed", "totalEnergyConsumed", "energyLeft", "currentStep",
        ):
            assert key in data
        assert data["currentStep"] == 1

    def test_all_off_is_game_over_not_error(self, client):
        sid = _create(client, difficulty="easy")["id"]
        resp = client.post(f"/api/game/sessions/{sid}/step", json={"on": []})
        assert resp.status_code == 200
        data = resp.json()
        assert data["gameOver"] is True
        assert "lost service" in data["msg"]
        assert data["cellsShouldBeOn"]

    def test_step_nonexistent(self, client):
        resp = client.post("/api/game/sessions/nonexistent/step", json={"on": []})
        assert resp.status_code == 404

    def test_step_body_validated(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/step", json={"on": "cell_0_cov_0"})
        assert resp.status_code == 422


class TestHistory:
    def test_undo_at_start_rejected(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/undo")
        assert resp.status_code == 400

    def test_step_then_undo(self, client):
        sid = _create(client, difficulty="easy")["id"]
        client.post(f"/api/game/sessions/{sid}/step", json={"on": _active_cells(client, sid)})
        resp = client.post(f"/api/game/sessions/{sid}/undo")
        assert resp.status_code == 200
        assert resp.json()["current_step"] == 0
        assert resp.json()["total_energy_consumed"] == 0.0

    def test_restart(self, client):
        sid = _create(client, difficulty="easy")["id"]
        client.post(f"/api/game/sessions/{sid}/step", json={"on": []})
        resp = client.post(f"/api/game/sessions/{sid}/restart")
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"
        assert resp.json()["current_step"] == 0

    def test_generate(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/generate",
                           json={"config": {"MAP_LEVELS": 1, "RANDOM_SEED": 8}})
        assert resp.status_code == 200
        assert resp.json()["config"]["MAP_LEVELS"] == 1
        assert resp.json()["difficulty"] is None

    def test_generate_invalid(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/generate", json={"config": {"MAP_LEVELS": 0}})
        assert resp.status_code == 400

    def test_change_difficulty(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/difficulty", json={"difficulty": "hard"})
        assert resp.status_code == 200
        assert resp.json()["difficulty"] == "hard"
        assert resp.json()["config"]["MAP_LEVELS"] == 3

    def test_change_difficulty_unknown(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/difficulty", json={"difficulty": "nightmare"})
        assert resp.status_code == 404

    def test_change_difficulty_nonexistent_session(self, client):
        resp = client.post("/api/game/sessions/nonexistent/difficulty", json={"difficulty": "easy"})
        assert resp.status_code == 404


class TestViews:
    def test_state(self, client):
        sid = _create(client)["id"]
        resp = client.get(f"/api/game/sessions/{sid}/state")
        assert resp.status_code == 200
        data = resp.json()
        assert "physicalMap" not in data
        assert data["currentStep"] == 0
        assert len(data["scenarioState"]["levels"]) == 2

    def test_layout(self, client):
        sid = _create(client)["id"]
        resp = client.get(f"/api/game/sessions/{sid}/layout")
        assert resp.status_code == 200
        assert len(resp.json()["levels"]) == 2

    def test_state_nonexistent(self, client):
        assert client.get("/api/game/sessions/nonexistent/state").status_code == 404


class TestConfigEndpoints:
    def test_defaults(self, client):
        resp = client.get("/api/config/defaults")
        assert resp.status_code == 200
        assert resp.json()["TOTAL_ENERGY"] == 1000.0

    def test_presets(self, client):
        resp = client.get("/api/config/presets")
        assert resp.status_code == 200
        assert [p["name"] for p in resp.json()] == ["easy", "medium", "hard"]

    def test_preset_by_name(self, client):
        resp = client.get("/api/config/presets/hard")
        assert resp.status_code == 200
        assert resp.json()["config"]["MAP_LEVELS"] == 3

    def test_unknown_preset(self, client):
        assert client.get("/api/config/presets/nightmare").status_code == 404


class TestNonFiniteNumbers:
    @pytest.mark.parametrize("config", [
        {"TOTAL_ENERGY": "inf"},
        {"TOTAL_ENERGY": -5},
        {"COVERAGE_CELL_RADIUS": "nan"},
        {"CELL_ENERGY_COST": "-inf"},
        {"DRONE": {"MAX_MOVE": "nan"}},
    ])
    def test_rejected_on_create(self, client, config):
        resp = client.post("/api/game/sessions", json={"config": config})
        assert resp.status_code == 400

    def test_rejected_on_generate(self, client):
        sid = _create(client)["id"]
        resp = client.post(f"/api/game/sessions/{sid}/generate",
                           json={"config": {"TOTAL_ENERGY": "inf"}})
        assert resp.status_code == 400
        assert client.get(f"/api/game/sessions/{sid}").json()["config"]["TOTAL_ENERGY"] == 1000.0

    def test_damaged_total_still_serialisable(self, client):
        sid = _create(client)["id"]
        session = client.app.state.session_manager.get_session(sid)
        session.record.total_energy_consumed = float("inf")
        state = client.get(f"/api/game/sessions/{sid}/state")
        assert state.status_code == 200
        assert state.json()["energyLeft"] == 1000.0
        summary = client.get(f"/api/game/sessions/{sid}")
        assert summary.status_code == 200
        assert summary.json()["energy_left"] == 1000.0


class TestGenerateErrors:
    def test_unknown_session(self, client):
        resp = client.post("/api/game/sessions/nonexistent/generate", json={"config": {}})
        assert resp.status_code == 404

    def test_internal_key_error_not_reported_as_missing_session(self, monkeypatch):
        app = create_app()
        client = TestClient(app, raise_server_exceptions=False)
        sid = client.post("/api/game/sessions", json={}).json()["id"]

        def broken(*args, **kwargs):
            raise KeyError("minions")

        monkeypatch.setattr(app.state.session_manager, "generate", broken)
        resp = client.post(f"/api/game/sessions/{sid}/generate", json={"config": {}})
        assert resp.status_code == 500


class TestSavedScenarios:
    def test_save_list_load_delete(self, client):
        sid = _create(client, difficulty="easy")["id"]
        resp = client.post("/api/maps", json={"name": "opening", "session_id": sid})
        assert resp.status_code == 200
        assert resp.json() == {"saved": True, "name": "opening"}

        names = [row["name"] for row in client.get("/api/maps").json()]
        assert "opening" in names

        loaded = client.get("/api/maps/opening")
        assert loaded.status_code == 200
        assert loaded.json()["currentStep"] == 0
        assert "physicalMap" in loaded.json()

        assert client.delete("/api/maps/opening").json() == {"deleted": True}
        assert client.get("/api/maps/opening").status_code == 404

    def test_upload_and_start_session(self, client):
        sid = _create(client, difficulty="easy")["id"]
        snapshot = client.post("/api/maps", json={"name": "copy", "session_id": sid})
        data = client.get(f"/api/maps/{snapshot.json()['name']}").json()

        uploaded = client.post("/api/maps", json={"name": "uploaded", "data": data})
        assert uploaded.status_code == 200

        started = client.post("/api/game/sessions", json={"scenario": "uploaded"})
        assert started.status_code == 200
        assert started.json()["current_step"] == 0
        assert started.json()["config"] == data["config"]

    def test_create_from_snapshot(self, client):
        sid = _create(client, config={"MAP_LEVELS": 1, "RANDOM_SEED": 5})["id"]
        client.post("/api/maps", json={"name": "snap", "session_id": sid})
        data = client.get("/api/maps/snap").json()
        resp = client.post("/api/game/sessions", json={"player_id": "bob", "snapshot": data})
        assert resp.status_code == 200
        assert resp.json()["config"]["MAP_LEVELS"] == 1

    def test_malformed_snapshot(self, client):
        resp = client.post("/api/game/sessions", json={"snapshot": {"currentStep": 1}})
        assert resp.status_code == 400

    def test_unknown_scenario(self, client):
        resp = client.post("/api/game/sessions", json={"scenario": "missing"})
        assert resp.status_code == 404

    def test_save_requires_one_source(self, client):
        assert client.post("/api/maps", json={"name": "empty"}).status_code == 400

    def test_save_unknown_session(self, client):
        resp = client.post("/api/maps", json={"name": "x", "session_id": "nonexistent"})
        assert resp.status_code == 404

    def test_delete_unknown(self, client):
        assert client.delete("/api/maps/nonexistent").status_code == 404


class TestLayoutFormats:
    def test_yaml_layout(self, client):
        sid = _create(client)["id"]
        resp = client.get(f"/api/game/sessions/{sid}/layout", params={"format": "yaml"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-yaml")
        assert yaml.safe_load(resp.text) == client.get(f"/api/game/sessions/{sid}/layout").json()

    def test_unknown_format(self, client):
        sid = _create(client)["id"]
        resp = client.get(f"/api/game/sessions/{sid}/layout", params={"format": "xml"})
        assert resp.status_code == 422
