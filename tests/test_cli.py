"""Tests for main.py -- the maintenance CLI.

Each test points the CLI at a throwaway SQLite file via --database-url and
seeds it through the same stores the API uses.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

import auth.store
from auth.errors import RefreshTokenRevoked
from auth.models import User
from auth.store import RefreshTokenStore, UserStore, create_store_engine
from core.config import get_settings
from main import main


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def seeded(db_url):
    """Create one user with two live sessions. Yields (user_id, [raw tokens], token_store)."""
    engine = create_store_engine(db_url)
    user_id = UserStore(engine).create_user(
        User(email="ops@x.com", hashed_password="$2b$12$hash", first_name="O", last_name="P")
    )
    tokens = RefreshTokenStore(engine)
    raws = [tokens.create(user_id, 3600)[0] for _ in range(2)]
    yield user_id, raws, tokens
    engine.dispose()


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()


def test_revoke_all_by_email(db_url, seeded, capsys):
    _, raws, tokens = seeded
    assert main(["--database-url", db_url, "revoke-all", "OPS@x.com"]) == 0
    assert "Revoked 2 session(s)" in capsys.readouterr().out
    for raw in raws:
        with pytest.raises(RefreshTokenRevoked):
            tokens.find_valid(raw)


def test_revoke_all_unknown_email(db_url, seeded, capsys):
    assert main(["--database-url", db_url, "revoke-all", "nobody@x.com"]) == 1
    assert "No account found" in capsys.readouterr().out


def test_purge_expired(db_url, seeded, monkeypatch, capsys):
    _, raws, tokens = seeded
    tokens.revoke(raws[0])
    later = datetime.now(timezone.utc) + timedelta(seconds=10)
    monkeypatch.setattr(auth.store, "_utcnow", lambda: later)

    assert main(["--database-url", db_url, "purge-expired"]) == 0
    assert "Purged 1 " in capsys.readouterr().out
    assert tokens.find_valid(raws[1]) is not None


def test_serve_passes_database_url_to_the_app(db_url, monkeypatch):
    import uvicorn

    calls = []
    monkeypatch.setenv("DATABASE_URL", "sqlite:///unused.db")
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    try:
        assert main(["--database-url", db_url, "serve", "--port", "8123"]) == 0
        assert os.environ["DATABASE_URL"] == db_url
        assert get_settings().database_url == db_url
    finally:
        get_settings.cache_clear()

    assert calls == [("api.main:app", {"host": "127.0.0.1", "port": 8123, "reload": False})]
