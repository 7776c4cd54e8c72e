"""Configuration endpoints: defaults and difficulty presets."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from cellgame.api.schemas import PresetResponse
from cellgame.core.config import GameConfig
from cellgame.experiment.presets import get_preset, list_presets

router = APIRouter()


@router.get("/defaults")
def get_defaults():
    return GameConfig().to_dict()


@router.get("/presets", response_model=list[PresetResponse])
def get_presets():
    return [
        {"name": name, "config": get_preset(name).to_dict()}
        for name in list_presets()
    ]


@router.get("/presets/{name}", response_model=PresetResponse)
def get_preset_by_name(name: str):
    try:
        config = get_preset(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown preset: '{name}'")
    return {"name": name, "config": config.to_dict()}
