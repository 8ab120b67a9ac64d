from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

import redis
from fastapi import Depends

from natsuki_quest.generation.base import GenerationService
from natsuki_quest.generation.factory import create_game_master
from natsuki_quest.infra.redis_client import create_redis
from natsuki_quest.initial_state import CanonicalState, default_canonical_state
from natsuki_quest.session import GameSession
from natsuki_quest.settings import GameSettings, settings_from_env
from natsuki_quest.state_store import RedisStateStore, StateStore


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


@lru_cache(maxsize=1)
def get_settings() -> GameSettings:
    return settings_from_env()


@lru_cache(maxsize=1)
def get_canonical_state() -> CanonicalState:
    # Built once per process so every session rewinds to the same opening.
    return default_canonical_state()


def get_store(r: redis.Redis = Depends(get_redis)) -> StateStore:
    return RedisStateStore(r)


def get_generation_service(store: StateStore = Depends(get_store)) -> GenerationService:
    return create_game_master(store=store)


def get_session(
    store: StateStore = Depends(get_store),
    generator: GenerationService = Depends(get_generation_service),
    initial: CanonicalState = Depends(get_canonical_state),
    settings: GameSettings = Depends(get_settings),
) -> GameSession:
    return GameSession(store=store, generator=generator, initial=initial, settings=settings)
