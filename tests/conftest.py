from __future__ import annotations

import os
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import fakeredis
import pytest
from fakes import ScriptedGenerator

from natsuki_quest.api.models import StateAggregate
from natsuki_quest.initial_state import CanonicalState, default_canonical_state
from natsuki_quest.session import GameSession
from natsuki_quest.settings import GameSettings
from natsuki_quest.state_store import RedisStateStore


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    Makes OPENAI_BASE_URL / OPENAI_MODEL available to the live integration
    tests without exporting them by hand. In CI the file is ignored unless
    NATSUKI_LOAD_DOTENV_FOR_TESTS=1, so those tests stay skipped.
    """

    if os.environ.get("CI") and os.environ.get("NATSUKI_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def store(r: fakeredis.FakeRedis) -> RedisStateStore:
    return RedisStateStore(r)


@pytest.fixture()
def canonical() -> CanonicalState:
    return default_canonical_state(now=datetime(2024, 1, 1, tzinfo=UTC))


@pytest.fixture()
def initial(canonical: CanonicalState) -> StateAggregate:
    return canonical.materialize()


@pytest.fixture()
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture()
def session(store: RedisStateStore, generator: ScriptedGenerator, canonical: CanonicalState) -> GameSession:
    return GameSession(
        store=store,
        generator=generator,
        initial=canonical,
        settings=GameSettings(generation_timeout_s=1.0),
    )


@pytest.fixture()
def client_and_redis(
    r: fakeredis.FakeRedis,
    generator: ScriptedGenerator,
    canonical: CanonicalState,
) -> Generator[tuple, None, None]:
    """FastAPI TestClient wired to fakeredis and a scripted generator."""

    from fastapi.testclient import TestClient

    from natsuki_quest.api.deps import get_canonical_state, get_generation_service, get_redis, get_settings
    from natsuki_quest.main import app

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_generation_service] = lambda: generator
    app.dependency_overrides[get_canonical_state] = lambda: canonical
    app.dependency_overrides[get_settings] = lambda: GameSettings(generation_timeout_s=1.0)
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
