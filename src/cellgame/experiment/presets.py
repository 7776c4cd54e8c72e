"""
Difficulty presets: pre-configured scenario templates.

Each preset returns a GameConfig with a fixed seed, so every player who
picks a difficulty gets the same map. Harder presets cut the energy
budget, add obstacles and minions, and finally a third level.
"""

from __future__ import annotations

from typing import Callable

from cellgame.core.config import GameConfig


def easy() -> GameConfig:
    """Default parameters."""
    return GameConfig(random_seed=1001)


def medium() -> GameConfig:
    """Less energy, more obstacles, more walkers."""
    return GameConfig.from_dict({
        "RANDOM_SEED": 2002,
        "TOTAL_ENERGY": 700,
        "TOTAL_OBSTACLE_AREA_PER_LEVEL": 50,
        "HUMAN": {"COUNT": 6},
        "HUMANOID": {"COUNT": 4},
        "DOG_ROBOT": {"COUNT": 3},
    })


def hard() -> GameConfig:
    """Medium, plus a third level and every minion type increased."""
    return medium().with_overrides({
        "RANDOM_SEED": 3003,
        "TOTAL_ENERGY": 500,
        "TOTAL_OBSTACLE_AREA_PER_LEVEL": 60,
        "MAP_LEVELS": 3,
        "HUMAN": {"COUNT": 7},
        "HUMANOID": {"COUNT": 5},
        "DOG_ROBOT": {"COUNT": 4},
        "TURTLE_BOT": {"COUNT": 3},
        "DRONE": {"COUNT": 2},
    })


# Registry of all presets
PRESETS: dict[str, Callable[[], GameConfig]] = {
    "easy": easy,
    "medium": medium,
    "hard": hard,
}


def get_preset(name: str) -> GameConfig:
    """Get a preset config by name."""
    if name not in PRESETS:
        raise KeyError(f"Unknown preset: '{name}'. Available: {list(PRESETS.keys())}")
    return PRESETS[name]()


def list_presets() -> list[str]:
    """Return list of available preset names."""
    return list(PRESETS.keys())
