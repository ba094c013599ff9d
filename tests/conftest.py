"""
tests/conftest.py -- Shared test fixtures for UserPortal.

This module provides:
  - make_db_url(): a fresh named shared-memory SQLite URI per call
  - stores / auth_service / profile_service: isolated service-level fixtures
  - web_client: TestClient over the real ASGI app with a patched lifespan
  - register / login: helpers that drive the HTML forms through web_client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG must be set before any auth/core import so get_settings() auto-generates
SECRET_KEY instead of raising. BCRYPT_ROUNDS=4 keeps hashing fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import -- settings are read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import httpx
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import ROLE_ADMIN
from auth.profile import ProfileService
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_db_url(prefix: str = "userportal") -> str:
    return f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def db_url() -> str:
    return make_db_url()


@pytest.fixture
def stores(db_url: str) -> Generator[tuple[UserStore, SessionStore], None, None]:
    users = UserStore(db_url)
    sessions = SessionStore(db_url)
    yield users, sessions
    sessions.close()
    users.close()


@pytest.fixture
def user_store(stores: tuple[UserStore, SessionStore]) -> UserStore:
    return stores[0]


@pytest.fixture
def session_store(stores: tuple[UserStore, SessionStore]) -> SessionStore:
    return stores[1]


@pytest.fixture
def auth_service(stores: tuple[UserStore, SessionStore]) -> AuthService:
    return AuthService(*stores)


@pytest.fixture
def profile_service(stores: tuple[UserStore, SessionStore]) -> ProfileService:
    return ProfileService(*stores)


# ---------------------------------------------------------------------------
# Web client
# ---------------------------------------------------------------------------


def _patch_lifespan(users: UserStore, sessions: SessionStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.session_store = sessions
        app.state.auth_service = AuthService(users, sessions)
        app.state.profile_service = ProfileService(users, sessions)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def web_client(stores: tuple[UserStore, SessionStore]) -> Generator[TestClient, None, None]:
    """Yield a TestClient with follow_redirects=False.

    Web route tests assert on redirect *locations* (e.g. 302 to /login),
    which are invisible once the client follows the redirect. The login rate
    limiter is switched off here; the rate-limit test turns it back on.
    """
    app.router.lifespan_context = _patch_lifespan(*stores)
    limiter.enabled = False
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client
    limiter.enabled = True
    limiter.reset()


@pytest.fixture
def register(web_client: TestClient) -> Callable[..., httpx.Response]:
    def _register(username: str = "alice", email: str = "a@x.com", password: str = "secret1") -> httpx.Response:
        return web_client.post("/register", data={"username": username, "email": email, "password": password})

    return _register


@pytest.fixture
def login(web_client: TestClient) -> Callable[..., httpx.Response]:
    def _login(email: str = "a@x.com", password: str = "secret1") -> httpx.Response:
        return web_client.post("/login", data={"email": email, "password": password})

    return _login


@pytest.fixture
def make_admin(user_store: UserStore) -> Callable[[str], None]:
    """Promote the account with the given email straight through the store."""

    def _make_admin(email: str) -> None:
        user = user_store.get_by_email(email)
        assert user is not None
        user_store.set_role(user.id, ROLE_ADMIN, actor="test")

    return _make_admin
