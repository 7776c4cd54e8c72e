"""Saved scenario library: save, list, load and delete named scenarios."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from cellgame.api.schemas import SaveScenarioRequest, ScenarioSummary

router = APIRouter()


def _scenario_not_found(name: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Scenario '{name}' not found")


@router.get("", response_model=list[ScenarioSummary])
def list_scenarios(request: Request):
    mgr = request.app.state.session_manager
    return mgr.list_scenarios()


@router.post("")
def save_scenario(req: SaveScenarioRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        name = mgr.save_scenario(name=req.name, session_id=req.session_id, data=req.data)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{req.session_id}' not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"saved": True, "name": name}


@router.get("/{name}")
def load_scenario(name: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        return mgr.load_scenario(name)
    except KeyError:
        raise _scenario_not_found(name)


@router.delete("/{name}")
def delete_scenario(name: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        mgr.delete_scenario(name)
    except KeyError:
        raise _scenario_not_found(name)
    return {"deleted": True}
