"""
tests/conftest.py -- Shared test fixtures for Weight Tracker integration tests.

This module provides:
  - _make_test_store(): isolated in-memory UserStore per test module
  - _patch_lifespan(): wires test store + cache into app.state, bypassing real startup
  - api_client: TestClient with a pre-registered user and its access token
  - redis_mock: the MagicMock standing in for the redis-py client
  - register: helper fixture that registers a fresh user through the API
  - reset_rate_limits: autouse, clears slowapi counters before each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any app import: DEBUG so get_settings()
auto-generates the JWT secrets, a low BCRYPT_ROUNDS so hashing is fast, and
rate limits small enough to trip in a test. Counters are reset before every
test (reset_rate_limits) so ordinary tests never hit them.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "20/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "20/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from cache.store import RedisCache

TEST_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store / cache helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


def _make_test_cache() -> RedisCache:
    """RedisCache over a MagicMock client: every GET misses, PING succeeds."""
    client = MagicMock()
    client.get.return_value = None
    client.ping.return_value = True
    return RedisCache(client=client)


def _patch_lifespan(user_store: UserStore, cache: RedisCache):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.cache = cache
        await asyncio.sleep(0)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers against an isolated in-memory store. The user
    "testuser@example.com" / TEST_PASSWORD exists before the client starts.
    """
    user_store = _make_test_store(request.module.__name__.replace(".", "_"))
    cache = _make_test_cache()

    user = user_store.create_user(
        User(
            email="testuser@example.com",
            username="testuser",
            password_hash=hash_password(TEST_PASSWORD),
        )
    )
    token = create_access_token(user.id)

    app.router.lifespan_context = _patch_lifespan(user_store, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, user.id

    user_store.close()


@pytest.fixture
def redis_mock(api_client) -> MagicMock:
    """The MagicMock redis client behind app.state.cache, with call history cleared."""
    client, _token, _uid = api_client
    mock = client.app.state.cache.client
    mock.reset_mock()
    return mock


@pytest.fixture
def register(api_client) -> Callable[..., dict]:
    """Return a helper that registers a unique user and returns the response `data`.

    Any of email / username / password may be overridden.
    """
    client, _token, _uid = api_client

    def _register(email: str | None = None, username: str | None = None, password: str = TEST_PASSWORD) -> dict:
        suffix = uuid.uuid4().hex[:8]
        resp = client.post(
            "/auth/register",
            json={
                "email": email or f"user-{suffix}@example.com",
                "username": username or f"user_{suffix}",
                "password": password,
            },
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        return resp.json()["data"]

    return _register


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Generator[None, None, None]:
    """Clear the shared in-memory rate-limit counters around every test."""
    limiter.reset()
    yield
    limiter.reset()
