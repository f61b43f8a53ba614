"""
tests/conftest.py -- Shared test fixtures for SessionGuard.

This module provides:
  - engine / user_store / token_store / sessions: function-scoped stores on a
    fresh file-backed SQLite DB under tmp_path (unit tests)
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: module-scoped TestClient for HTTP integration tests

Design: unit fixtures use a real file DB, not ':memory:'. SQLAlchemy pools
':memory:' connections per thread, so the concurrency tests would otherwise
see a different empty database in each worker thread. The HTTP fixture uses
a named shared-memory URI (file:name?mode=memory&cache=shared&uri=true) so
every pooled connection sees the same in-memory instance.

Environment variables must be set before any auth/core import so
get_settings() builds a dev-mode Settings (auto-generated SECRET_KEY), accepts
the TestClient Host header, and leaves rate limiting off.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.sessions import SessionManager
from auth.store import RefreshTokenStore, UserStore, create_store_engine
from core.config import Settings, get_settings

PASSWORD = "Secret1!"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_store_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def token_store(engine: Engine) -> RefreshTokenStore:
    return RefreshTokenStore(engine)


@pytest.fixture
def sessions(user_store: UserStore, token_store: RefreshTokenStore, settings: Settings) -> SessionManager:
    return SessionManager(user_store, token_store, settings)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires stores built on the test engine into app.state so TestClient routes
    see an isolated DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = UserStore(engine)
        app.state.token_store = RefreshTokenStore(engine)
        app.state.sessions = SessionManager(app.state.user_store, app.state.token_store, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient bound to a per-module shared-memory auth DB."""
    db_name = request.module.__name__.replace(".", "_")
    engine = create_store_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    engine.dispose()


@pytest.fixture
def register_user(api_client: TestClient):
    """Return a helper that POSTs /auth/register and returns the response."""

    def _register(email: str, password: str = PASSWORD, first: str = "A", last: str = "B"):
        return api_client.post(
            "/auth/register",
            json={"email": email, "password": password, "firstName": first, "lastName": last},
        )

    return _register
