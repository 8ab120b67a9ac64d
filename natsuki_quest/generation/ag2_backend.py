from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from autogen import ConversableAgent

from natsuki_quest.generation.agent import AgentAction, JsonSchema, RenderedContext
from natsuki_quest.generation.autogen_config import llm_config_from_env


def _extract_last_content(messages: object) -> str:
    """Last non-empty message content from AG2 chat history."""

    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


@dataclass(slots=True)
class Ag2ChatAgent:
    """Single-shot AG2 chat used by the game master.

    The system prompt comes from our RenderedContext; transport and model
    config come from AG2. AG2's `run` blocks, so it is moved off the event
    loop and the turn's timeout can still fire.
    """

    name: str
    model: str

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:
        text = await asyncio.to_thread(self._run_chat, prompt, ctx, structured_output)
        metadata: dict[str, Any] = {"model": self.model}
        if structured_output is not None:
            metadata["structured"] = True
        return AgentAction(kind="chat", content=text, metadata=metadata)

    def _run_chat(self, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None) -> str:
        agent = ConversableAgent(
            name=self.name,
            system_message=ctx.system_prompt,
            llm_config=llm_config_from_env(default_model=self.model),
            human_input_mode="NEVER",
        )

        # AG2 forwards unknown kwargs to the OpenAI client.
        extra: dict[str, Any] = {}
        if structured_output is not None:
            extra["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": structured_output.name,
                    "schema": structured_output.schema,
                    "strict": structured_output.strict,
                },
            }

        result = agent.run(message=prompt, max_turns=1, **extra)
        result.process()

        text = _extract_last_content(list(result.messages))
        if not text and isinstance(result.summary, str):
            text = result.summary.strip()
        return text
