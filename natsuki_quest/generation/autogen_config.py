from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from autogen import LLMConfig

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True, slots=True)
class GameMasterLLMSettings:
    model: str
    base_url: str | None
    api_key: str | None
    # Per-request HTTP timeout for the OpenAI client, separate from the turn timeout.
    request_timeout_s: int | None


def settings_from_env(*, default_model: str = DEFAULT_MODEL) -> GameMasterLLMSettings:
    raw_timeout = os.environ.get("NATSUKI_LLM_REQUEST_TIMEOUT_S")
    return GameMasterLLMSettings(
        model=os.environ.get("NATSUKI_GM_MODEL") or os.environ.get("OPENAI_MODEL", default_model),
        # For Ollama, typically http://127.0.0.1:11434/v1
        base_url=os.environ.get("OPENAI_BASE_URL"),
        api_key=os.environ.get("OPENAI_API_KEY"),
        request_timeout_s=int(raw_timeout) if raw_timeout else None,
    )


def llm_config_from_env(*, default_model: str = DEFAULT_MODEL) -> LLMConfig:
    s = settings_from_env(default_model=default_model)

    # OpenAI-compatible local servers ignore the key, but the client insists on one.
    api_key = s.api_key or ("ollama" if s.base_url else None)
    if not api_key:
        raise RuntimeError(
            "Set OPENAI_API_KEY for hosted OpenAI, or set OPENAI_BASE_URL for a local OpenAI-compatible server"
        )

    entry: dict[str, Any] = {"model": s.model, "api_key": api_key}
    if s.base_url:
        entry["base_url"] = s.base_url
    if s.request_timeout_s:
        entry["timeout"] = s.request_timeout_s

    return LLMConfig(config_list=[entry])
