"""
tests/conftest.py -- Shared test fixtures for Markpost integration tests.

This module provides:
  - make_engine(): isolated named shared-memory SQLite engine
  - make_settings(): Settings for tests (DEBUG, throttles relaxed)
  - build_test_app(): create_app + web router + patched lifespan
  - api_client: TestClient wired to a fresh in-memory DB, plus a seeded user
  - client_factory: builds extra clients with Settings overrides (rate limits)
  - user_store / post_store: repository fixtures for unit tests

Design: fixtures use named shared-memory SQLite URIs
(file:name?mode=memory&cache=shared&uri=true) with a uuid suffix, so every
fixture gets its own database while TestClient's worker threads and the test
body all see the same one. A plain :memory: URL also works (create_db_engine
pins it to a single StaticPool connection) and is covered through the real
lifespan in test_api_routes.py.

The DEBUG env var must be set before get_settings() can run without a
SECRET_KEY; tests mostly build Settings(...) directly, but asgi.py imports
would call get_settings().
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set DEBUG before any core/auth import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValidationError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import create_app, wire_components
from auth.models import User
from auth.store import UserStore
from auth.tokens import generate_post_key, hash_password
from core.config import Settings
from core.database import create_db_engine
from posts.store import PostStore
from web.routes import router as web_router

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_USERNAME = "testuser"
TEST_PASSWORD = "pw123456"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_engine(db_suffix: str = "") -> Engine:
    """Create an isolated named shared-memory SQLite engine."""
    name = f"test_markpost_{db_suffix}_{uuid.uuid4().hex}"
    return create_db_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_settings(**overrides) -> Settings:
    """Settings for tests: fixed secret, in-memory DB, global throttle off."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_type": "sqlite",
        "database_url": ":memory:",
        "api_rate_limit": 0,
        "cleanup_interval_hours": 0,
        "allowed_hosts": ["*"],
    }
    values.update(overrides)
    return Settings(**values)


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine into app.state via the same wire_components() the
    real lifespan uses, so routes see an isolated in-memory DB. The sleeping
    task stands in for the cleanup loop so shutdown still has something to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, engine)
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


def build_test_app(engine: Engine, **settings_overrides) -> FastAPI:
    app = create_app(make_settings(**settings_overrides))
    app.include_router(web_router, tags=["Web"])
    app.router.lifespan_context = _patch_lifespan(engine)
    return app


def seed_user(store: UserStore, username: str = TEST_USERNAME, password: str = TEST_PASSWORD) -> User:
    return store.create_user(
        User(username=username, post_key=generate_post_key(), hashed_password=hash_password(password))
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_slowapi() -> None:
    """The slowapi limiter is a module-level singleton; clear it between tests."""
    limiter.reset()


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = make_engine("unit")
    yield eng
    eng.dispose()


@pytest.fixture()
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture()
def post_store(engine: Engine, user_store: UserStore) -> PostStore:
    return PostStore(engine)


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, User], None, None]:
    """Yield (client, user) for API integration tests.

    The TestClient uses the real app factory with a patched lifespan so tests
    hit real route handlers and middleware but an isolated in-memory store.
    The user (TEST_USERNAME / TEST_PASSWORD) is seeded before the client starts.
    """
    eng = make_engine("api")
    user = seed_user(UserStore(eng))
    app = build_test_app(eng)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user

    eng.dispose()


@pytest.fixture()
def client_factory() -> Generator:
    """Return a builder for (client, user) pairs with custom Settings overrides.

    Each call gets its own database and app instance, so rate-limit counters
    and the token bucket start fresh. Clients are closed at teardown.
    """
    opened: list[tuple[TestClient, Engine]] = []

    def _build(**settings_overrides) -> tuple[TestClient, User]:
        eng = make_engine("factory")
        user = seed_user(UserStore(eng))
        client = TestClient(build_test_app(eng, **settings_overrides), raise_server_exceptions=True)
        client.__enter__()
        opened.append((client, eng))
        return client, user

    yield _build

    for client, eng in opened:
        client.__exit__(None, None, None)
        eng.dispose()
