"""
Shared fixtures: a throwaway SQLite credential store per test.
"""
import asyncio
import os

import pytest

# Minimal env so config loads without touching a real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")

from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool
from starlette.requests import Request

from app.auth import generate_api_key
from app.main import app
from app.rate_limit import limiter
from app.store import SqlCredentialStore


def make_request(headers: dict | None = None) -> Request:
    """Bare Starlette request carrying only the given headers."""
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": raw,
    })


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'clawgate.db'}"


@pytest.fixture
def store(db_url):
    # NullPool: tests drive the store from more than one event loop
    s = SqlCredentialStore.from_url(db_url, poolclass=NullPool)
    asyncio.run(s.init())
    yield s
    asyncio.run(s.close())


@pytest.fixture(autouse=True)
def _reset_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def client(store):
    app.state.store = store
    with TestClient(app) as c:
        yield c
    del app.state.store


@pytest.fixture
def make_key(store):
    """Persist a key for ``agent_id`` and return the raw value."""
    def _make(agent_id: str = "agent-1") -> str:
        raw, key_hash = generate_api_key()
        asyncio.run(store.put_api_key(agent_id, key_hash))
        return raw
    return _make


@pytest.fixture
def request_with():
    return make_request
