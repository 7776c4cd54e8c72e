"""
Pydantic models for API request/response validation.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Any


# === Sessions ===

class CreateSessionRequest(BaseModel):
    player_id: str | None = None
    name: str | None = None
    difficulty: str | None = None
    config: dict[str, Any] | None = None
    scenario: str | None = None
    snapshot: dict[str, Any] | None = None


class StepRequest(BaseModel):
    on: list[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)


class DifficultyRequest(BaseModel):
    difficulty: str


class SessionSummary(BaseModel):
    id: str
    name: str
    difficulty: str | None = None
    created_at: str
    updated_at: str
    current_step: int


class SessionResponse(BaseModel):
    id: str
    name: str
    difficulty: str | None = None
    status: str
    current_step: int
    total_energy_consumed: float
    energy_left: float
    config: dict[str, Any]


# === Saved scenarios ===

class SaveScenarioRequest(BaseModel):
    name: str | None = None
    session_id: str | None = None
    data: dict[str, Any] | None = None


class ScenarioSummary(BaseModel):
    name: str
    step_index: int
    created_at: str


# === Config ===

class PresetResponse(BaseModel):
    name: str
    config: dict[str, Any]
