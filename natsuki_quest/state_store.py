from __future__ import annotations

from typing import Protocol

import redis
from pydantic import ValidationError

from natsuki_quest.api.models import StateAggregate
from natsuki_quest.errors import GameNotFound, StoreUnavailable


SAVES_SET_KEY = "natsuki:saves"
SAVE_KEY_PREFIX = "natsuki:save:"  # + {owner_id}


def _save_key(owner_id: str) -> str:
    return f"{SAVE_KEY_PREFIX}{owner_id}"


class StateStore(Protocol):
    """One full StateAggregate per owner. Reads return the latest put.

    No locking and no versioning: overlapping writers are last-write-wins.
    Implementations raise StoreUnavailable instead of returning stale data.
    """

    def get(self, owner_id: str) -> StateAggregate | None:  # pragma: no cover
        ...

    def put(self, owner_id: str, state: StateAggregate) -> None:  # pragma: no cover
        ...

    def owners(self) -> list[str]:  # pragma: no cover
        ...


class RedisStateStore:
    def __init__(self, r: redis.Redis) -> None:
        self._r = r

    def get(self, owner_id: str) -> StateAggregate | None:
        try:
            raw = self._r.get(_save_key(owner_id))
        except redis.RedisError as e:
            raise StoreUnavailable(f"Could not read save for {owner_id}: {e}") from e
        if not raw:
            return None
        try:
            return StateAggregate.model_validate_json(raw)
        except ValidationError as e:
            raise StoreUnavailable(f"Save for {owner_id} is unreadable: {e.error_count()} errors") from e

    def put(self, owner_id: str, state: StateAggregate) -> None:
        try:
            # redis-py is synchronous; a pipeline keeps the save and its index together.
            pipe = self._r.pipeline()
            pipe.set(_save_key(owner_id), state.model_dump_json())
            pipe.sadd(SAVES_SET_KEY, owner_id)
            pipe.execute()
        except redis.RedisError as e:
            raise StoreUnavailable(f"Could not write save for {owner_id}: {e}") from e

    def owners(self) -> list[str]:
        try:
            return sorted(self._r.smembers(SAVES_SET_KEY))
        except redis.RedisError as e:
            raise StoreUnavailable(f"Could not list saves: {e}") from e


def require_state(store: StateStore, owner_id: str) -> StateAggregate:
    state = store.get(owner_id)
    if state is None:
        raise GameNotFound("Game not found")
    return state
