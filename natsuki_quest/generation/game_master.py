from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from natsuki_quest.errors import GenerationUnavailable
from natsuki_quest.generation.agent import Agent, JsonSchema, RenderedContext
from natsuki_quest.generation.base import GenerationRequest, GenerationResult, ToolCall
from natsuki_quest.prompts import load_prompt
from natsuki_quest.tools import ToolExecutor, ToolResult

logger = logging.getLogger(__name__)


class GameMasterReplyError(ValueError):
    pass


_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "icon": {"type": "string"},
        "quantity": {"type": "integer", "minimum": 1},
    },
    "required": ["id", "name", "description", "quantity"],
}

_CHARACTER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "affinity": {"type": "integer", "minimum": 0, "maximum": 100},
        "status": {"type": "string"},
        "description": {"type": "string"},
        "avatar": {"type": "string"},
        "current_location": {"type": ["string", "null"]},
    },
    "required": ["name", "affinity", "description"],
}

GAME_MASTER_SCHEMA = JsonSchema(
    name="game_master_turn",
    schema={
        "type": "object",
        "properties": {
            "narrative": {"type": "string"},
            "choices": {"type": "array", "items": {"type": "string"}, "minItems": 1, "maxItems": 4},
            "inventory": {"type": ["array", "null"], "items": _ITEM_SCHEMA},
            "characters": {"type": ["array", "null"], "items": _CHARACTER_SCHEMA},
            "is_game_over": {"type": "boolean"},
            "last_outcome": {"type": "string"},
            "should_set_checkpoint": {"type": "boolean"},
            "checkpoint_reason": {"type": ["string", "null"]},
            "should_trigger_rewind": {"type": "boolean"},
            "rewind_reason": {"type": ["string", "null"]},
            "tool_calls": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        # JSON-encoded object; free-form objects do not survive every backend.
                        "arguments": {"type": "string"},
                    },
                    "required": ["name", "arguments"],
                },
            },
        },
        "required": ["narrative", "choices", "is_game_over", "last_outcome"],
    },
    strict=False,
)


def _strip_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _parse_tool_calls(raw: object) -> list[ToolCall]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise GameMasterReplyError("'tool_calls' must be a list")

    calls: list[ToolCall] = []
    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise GameMasterReplyError("Each tool call needs a 'name'")
        arguments = entry.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                raise GameMasterReplyError(f"Tool {entry['name']} has invalid arguments JSON: {e}") from e
        if not isinstance(arguments, dict):
            raise GameMasterReplyError(f"Tool {entry['name']} arguments must be an object")
        calls.append(ToolCall(name=entry["name"], arguments=arguments))
    return calls


def parse_game_master_reply(text: str) -> tuple[GenerationResult, list[ToolCall]]:
    """Parse the model's turn reply.

    Expected a JSON object matching GAME_MASTER_SCHEMA. A single surrounding
    markdown code fence is tolerated; anything else that is not JSON is rejected.
    """

    try:
        data = json.loads(_strip_fence(text))
    except json.JSONDecodeError as e:
        raise GameMasterReplyError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GameMasterReplyError("Expected a JSON object")

    calls = _parse_tool_calls(data.pop("tool_calls", None))
    try:
        result = GenerationResult.model_validate(data)
    except ValidationError as e:
        raise GameMasterReplyError(f"Reply does not match the turn schema: {e.error_count()} errors") from e
    return result, calls


def _render_prompt(request: GenerationRequest) -> str:
    parts = [
        "Current game state:",
        request.projection.model_dump_json(indent=2),
    ]
    for key, value in request.auxiliary_context.items():
        parts.append(f"\n{key}:\n{value}")
    parts.append(f"\nThe player chose: {request.player_action}")
    parts.append("\nReturn ONLY JSON matching the required schema.")
    return "\n".join(parts)


def _summarize_tools(results: list[ToolResult]) -> str:
    return "; ".join(f"{r.name}: {'ok' if r.success else 'failed'} ({r.message})" for r in results)


class GameMasterService:
    """Generation service backed by a chat agent.

    The agent replies with the next story beat plus the tool calls it wants
    applied. Tool calls run in order against the store before `generate`
    returns, so the turn pipeline sees their effects on its re-read.
    """

    def __init__(self, *, agent: Agent, tools: ToolExecutor, max_attempts: int = 3) -> None:
        self._agent = agent
        self._tools = tools
        self._max_attempts = max_attempts

    def system_context(self) -> RenderedContext:
        tool_docs = json.dumps(self._tools.describe(), indent=2)
        return RenderedContext(system_prompt=load_prompt("game_master.txt") + "\nAvailable tools:\n" + tool_docs)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ctx = self.system_context()
        prompt = _render_prompt(request)

        last_err: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            action = await self._agent.propose_action(prompt=prompt, ctx=ctx, structured_output=GAME_MASTER_SCHEMA)
            try:
                result, calls = parse_game_master_reply(action.content)
            except GameMasterReplyError as e:
                logger.info("Game master reply for %s rejected (attempt %s): %s", request.owner_id, attempt, e)
                last_err = e
                continue

            if calls:
                results = self._tools.execute_all(owner_id=request.owner_id, calls=calls)
                logger.info("Game master tools for %s: %s", request.owner_id, _summarize_tools(results))
            return result

        raise GenerationUnavailable(f"No usable game master reply after {self._max_attempts} attempts: {last_err}")
