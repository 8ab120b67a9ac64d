from __future__ import annotations

from typing import cast

from natsuki_quest.generation.ag2_backend import Ag2ChatAgent
from natsuki_quest.generation.agent import Agent
from natsuki_quest.generation.autogen_config import settings_from_env
from natsuki_quest.generation.game_master import GameMasterService
from natsuki_quest.state_store import StateStore
from natsuki_quest.tools import ToolExecutor


def create_default_agent(*, name: str = "game-master") -> Agent:
    """AG2-backed agent; model and endpoint come from the environment."""

    return cast(Agent, Ag2ChatAgent(name=name, model=settings_from_env().model))


def create_game_master(*, store: StateStore) -> GameMasterService:
    return GameMasterService(agent=create_default_agent(), tools=ToolExecutor(store=store))
