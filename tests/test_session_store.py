"""Unit tests for auth/sessions.py -- server-side session store.

Covers:
- create/get round trip of the SessionUser snapshot
- the raw token never appears in the table (rows are keyed by HMAC)
- sliding TTL: get() drops expired rows, save() pushes expiry forward
- destroy() is idempotent; destroy_for_user() removes every device
- purge_expired() removes only expired rows
"""

import time
from types import SimpleNamespace

import pytest
from sqlalchemy import text

from auth.models import SessionUser
from auth.sessions import SessionStore

ALICE = SessionUser(id=1, username="alice", email="a@x.com", role="user")


@pytest.fixture
def clock(monkeypatch):
    """Controllable clock for auth.sessions. Advance with clock.now += seconds."""
    fake = SimpleNamespace(now=time.time())
    monkeypatch.setattr("auth.sessions.time", SimpleNamespace(time=lambda: fake.now))
    return fake


def test_create_then_get(session_store: SessionStore) -> None:
    token = session_store.create(ALICE)
    assert session_store.get(token) == ALICE


def test_unknown_and_empty_tokens(session_store: SessionStore) -> None:
    assert session_store.get("not-a-token") is None
    assert session_store.get("") is None


def test_raw_token_is_not_stored(session_store: SessionStore) -> None:
    token = session_store.create(ALICE)
    with session_store.engine.connect() as conn:
        keys = [row[0] for row in conn.execute(text("SELECT token_hash FROM sessions"))]
    assert len(keys) == 1
    assert token not in keys


def test_expired_session_is_dropped(session_store: SessionStore, clock) -> None:
    token = session_store.create(ALICE)
    clock.now += session_store.ttl + 1
    assert session_store.get(token) is None
    # the expired row was deleted on read, so rewinding the clock does not revive it
    clock.now -= session_store.ttl + 1
    assert session_store.get(token) is None


def test_save_slides_expiry(session_store: SessionStore, clock) -> None:
    token = session_store.create(ALICE)
    clock.now += session_store.ttl - 10
    renamed = SessionUser(id=1, username="alicia", email="a@x.com", role="user")
    assert session_store.save(token, renamed) is True
    clock.now += 20  # past the original expiry, inside the refreshed one
    assert session_store.get(token) == renamed


def test_save_unknown_token(session_store: SessionStore) -> None:
    assert session_store.save("missing", ALICE) is False


def test_destroy_is_idempotent(session_store: SessionStore) -> None:
    token = session_store.create(ALICE)
    assert session_store.destroy(token) is True
    assert session_store.destroy(token) is False
    assert session_store.get(token) is None


def test_destroy_for_user(session_store: SessionStore) -> None:
    laptop = session_store.create(ALICE)
    phone = session_store.create(ALICE)
    bob = session_store.create(SessionUser(id=2, username="bob", email="b@x.com", role="user"))

    assert session_store.destroy_for_user(ALICE.id) == 2
    assert session_store.get(laptop) is None
    assert session_store.get(phone) is None
    assert session_store.get(bob) is not None


def test_purge_expired(db_url: str, clock) -> None:
    short = SessionStore(db_url, ttl=10)
    try:
        stale = short.create(ALICE)
        clock.now += 20
        fresh = short.create(ALICE)
        assert short.purge_expired() == 1
        assert short.get(stale) is None
        assert short.get(fresh) == ALICE
    finally:
        short.close()
