from __future__ import annotations

import os

import redis


def get_redis_url() -> str:
    # A game-specific URL wins so the save store can live apart from other Redis users.
    return os.environ.get("NATSUKI_REDIS_URL") or os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis(*, url: str | None = None) -> redis.Redis:
    # Saves are JSON text; decode_responses keeps str in/out.
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)
