from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager

import redis

from natsuki_quest.errors import StoreUnavailable, TurnInProgress

logger = logging.getLogger(__name__)


def _turn_lock_key(owner_id: str) -> str:
    return f"lock:turn:{owner_id}"


def _release(r: redis.Redis, key: str, token: str) -> None:
    """Delete `key` only while it still holds `token`, as one WATCH/MULTI transaction."""

    with r.pipeline() as pipe:
        try:
            pipe.watch(key)
            if pipe.get(key) != token:
                pipe.unwatch()
                logger.info("Turn lock %s expired and was taken over; leaving it", key)
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
        except redis.WatchError:
            logger.info("Turn lock %s changed hands during release; leaving it", key)


@contextmanager
def turn_lock(*, r: redis.Redis, owner_id: str, ttl_ms: int):
    """Per-player lock held for the length of one turn.

    The TTL must outlive the generation timeout so a slow turn is not
    overtaken by the next one. Release checks the token, so a holder whose
    lock already expired does not free someone else's.
    """

    key = _turn_lock_key(owner_id)
    token = uuid.uuid4().hex
    try:
        acquired = r.set(key, token, nx=True, px=ttl_ms)
    except redis.RedisError as e:
        raise StoreUnavailable(f"Could not take the turn lock for {owner_id}: {e}") from e
    if not acquired:
        raise TurnInProgress("A turn is already in progress for this player")
    try:
        yield
    finally:
        try:
            _release(r, key, token)
        except redis.RedisError as e:
            # The TTL releases it eventually.
            logger.warning("Could not release turn lock for %s: %s", owner_id, e)
