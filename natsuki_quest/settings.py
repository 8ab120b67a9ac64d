from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GameSettings:
    # Upper bound on one generation call; on expiry the turn takes the failure path.
    generation_timeout_s: float = 90.0
    # Trailing characters of the memory log kept after each turn.
    memory_limit: int = 2000
    # The turn lock must outlive a slow generation call.
    turn_lock_margin_ms: int = 10_000

    @property
    def turn_lock_ttl_ms(self) -> int:
        return int(self.generation_timeout_s * 1000) + self.turn_lock_margin_ms


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def settings_from_env() -> GameSettings:
    defaults = GameSettings()
    return GameSettings(
        generation_timeout_s=_env_float("NATSUKI_GENERATION_TIMEOUT_S", defaults.generation_timeout_s),
        memory_limit=_env_int("NATSUKI_MEMORY_LIMIT", defaults.memory_limit),
        turn_lock_margin_ms=_env_int("NATSUKI_TURN_LOCK_MARGIN_MS", defaults.turn_lock_margin_ms),
    )
