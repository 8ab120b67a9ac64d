from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class JsonSchema:
    """Minimal JSON Schema wrapper for OpenAI-style structured outputs."""

    name: str
    schema: dict[str, Any]
    strict: bool = True


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final system prompt handed to the LLM agent."""

    system_prompt: str


@dataclass(frozen=True, slots=True)
class AgentAction:
    kind: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Agent(Protocol):
    name: str

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:  # pragma: no cover
        ...
