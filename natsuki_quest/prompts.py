from __future__ import annotations

import os
from pathlib import Path


class PromptLoadError(RuntimeError):
    pass


def prompts_dir() -> Path:
    override = os.environ.get("NATSUKI_PROMPTS_DIR")
    if override:
        return Path(override)
    # natsuki_quest/prompts.py -> natsuki_quest/ -> project root
    return Path(__file__).resolve().parents[1] / "prompts"


def load_prompt(name: str) -> str:
    """Load a prompt text file, e.g. `load_prompt("game_master.txt")`."""

    path = prompts_dir() / name
    try:
        return path.read_text(encoding="utf-8").strip() + "\n"
    except FileNotFoundError as e:
        raise PromptLoadError(f"Prompt not found: {path}") from e
