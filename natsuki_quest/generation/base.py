from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field

from natsuki_quest.api.models import Character, Item, StateProjection


class GenerationRequest(BaseModel):
    owner_id: str
    projection: StateProjection
    player_action: str
    # Free-form extras such as injected lore; opaque to the turn pipeline.
    auxiliary_context: dict[str, str] = Field(default_factory=dict)


class ToolCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class GenerationResult(BaseModel):
    """What the generation service hands back for one turn.

    `None` for an optional delta means "no opinion"; the turn keeps whatever
    the store already holds for that field.
    """

    narrative: str
    choices: list[str] = Field(..., min_length=1, max_length=4)
    inventory: list[Item] | None = None
    characters: list[Character] | None = None
    is_game_over: bool = False
    last_outcome: str = ""

    should_set_checkpoint: bool = False
    checkpoint_reason: str | None = None
    should_trigger_rewind: bool = False
    rewind_reason: str | None = None


class GenerationService(Protocol):
    """Produces the next story beat.

    May apply tool mutations to the store while running; those must be
    committed before `generate` returns. Raises GenerationUnavailable when no
    usable result can be produced.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResult:  # pragma: no cover
        ...
