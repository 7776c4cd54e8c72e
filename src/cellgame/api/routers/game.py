"""Game session endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request, Response

from cellgame.api.schemas import (
    CreateSessionRequest,
    DifficultyRequest,
    GenerateRequest,
    SessionResponse,
    SessionSummary,
    StepRequest,
)
from cellgame.core.config import GameConfig

router = APIRouter()


def _session_response(session) -> dict:
    record = session.record
    return {
        "id": session.id,
        "name": session.name,
        "difficulty": session.difficulty,
        "status": session.status,
        "current_step": record.step_index,
        "total_energy_consumed": session.total_energy_consumed,
        "energy_left": session.energy_left,
        "config": session.config.to_dict(),
    }


def _not_found(session_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Session '{session_id}' not found")


@router.post("/sessions", response_model=SessionResponse)
def create_session(req: CreateSessionRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        config = GameConfig.from_dict(req.config) if req.config else None
        session = mgr.create_session(
            player_id=req.player_id, config=config, difficulty=req.difficulty,
            snapshot=req.snapshot, name=req.name, scenario=req.scenario,
        )
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.get("/sessions", response_model=list[SessionSummary])
def list_sessions(request: Request):
    mgr = request.app.state.session_manager
    return mgr.list_sessions()


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        session = mgr.get_session(session_id)
    except KeyError:
        raise _not_found(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        mgr.delete_session(session_id)
    except KeyError:
        raise _not_found(session_id)
    return {"deleted": True}


@router.post("/sessions/{session_id}/step")
def step_session(session_id: str, req: StepRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        return mgr.step(session_id, req.on)
    except KeyError:
        raise _not_found(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/sessions/{session_id}/undo", response_model=SessionResponse)
def undo_step(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        session = mgr.undo(session_id)
    except KeyError:
        raise _not_found(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/restart", response_model=SessionResponse)
def restart_session(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        session = mgr.restart(session_id)
    except KeyError:
        raise _not_found(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/generate", response_model=SessionResponse)
def generate_scenario(session_id: str, req: GenerateRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        mgr.get_session(session_id)
    except KeyError:
        raise _not_found(session_id)
    try:
        session = mgr.generate(session_id, req.config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _session_response(session)


@router.post("/sessions/{session_id}/difficulty", response_model=SessionResponse)
def change_difficulty(session_id: str, req: DifficultyRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        mgr.get_session(session_id)
    except KeyError:
        raise _not_found(session_id)
    try:
        session = mgr.change_difficulty(session_id, req.difficulty)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown difficulty: '{req.difficulty}'")
    return _session_response(session)


@router.get("/sessions/{session_id}/state")
def get_state(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        return mgr.get_state(session_id)
    except KeyError:
        raise _not_found(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/sessions/{session_id}/layout")
def export_layout(
    session_id: str,
    request: Request,
    format: str = Query("json", pattern="^(json|yaml)$"),
):
    mgr = request.app.state.session_manager
    try:
        if format == "yaml":
            return Response(mgr.export_layout_yaml(session_id), media_type="application/x-yaml")
        return mgr.export_layout(session_id)
    except KeyError:
        raise _not_found(session_id)
