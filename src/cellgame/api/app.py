"""
FastAPI application factory for the Cell Game API.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cellgame.api.sessions import SessionManager
from cellgame.api.routers import config, game, maps

# Load .env from the project root first, then CWD
_project_root = Path(__file__).resolve().parents[3]  # src/cellgame/api/app.py → project root
load_dotenv(_project_root / ".env")
load_dotenv(Path.cwd() / ".env")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Cell Game API",
        description="REST API for the Cell Game scenario engine",
        version="0.1.0",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    db_path = os.environ.get("CELLGAME_DB_PATH", "data/cellgame.db")
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    application.state.session_manager = SessionManager(db_path=db_path)

    application.include_router(game.router, prefix="/api/game", tags=["game"])
    application.include_router(config.router, prefix="/api/config", tags=["config"])
    application.include_router(maps.router, prefix="/api/maps", tags=["maps"])

    @application.get("/api/health")
    def health_check():
        return {"status": "ok"}

    return application


app = create_app()
