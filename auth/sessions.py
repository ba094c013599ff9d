"""
auth/sessions.py -- Server-side session store.

The browser holds only an opaque token (see auth/tokens.py). The server maps
HMAC(token) to a JSON snapshot of the signed-in user plus an expiry stamp.

Expiry is a sliding TTL measured from the last write: create() and save()
both push expires_at forward by Settings.session_ttl_seconds. get() treats an
expired row as absent and deletes it on the spot; purge_expired() trims the
rest and is run periodically from the app lifespan.

Usage:
    sessions = SessionStore()
    token = sessions.create(user.to_session_user())
    snapshot = sessions.get(token)        # SessionUser or None
    sessions.destroy(token)

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import json
import logging
import time

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import SessionUser
from auth.store import connect, make_engine
from auth.tokens import generate_session_token, hash_session_token
from core.config import get_settings

logger = logging.getLogger("userportal.sessions")

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, nullable=False, index=True),
    Column("data", Text, nullable=False),  # JSON SessionUser snapshot
    Column("expires_at", Float, nullable=False, index=True),  # epoch seconds
)


class SessionStore:
    def __init__(self, db_url: str | None = None, ttl: int | None = None) -> None:
        settings = get_settings()
        self.ttl = ttl if ttl is not None else settings.session_ttl_seconds
        self.engine: Engine = make_engine(db_url or settings.database_url)
        _metadata.create_all(self.engine)

    def create(self, user: SessionUser) -> str:
        """Open a new session for user and return the raw token for the cookie."""
        token = generate_session_token()
        with connect(self.engine, "create session", write=True) as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=hash_session_token(token),
                    user_id=user.id,
                    data=json.dumps(user.to_dict()),
                    expires_at=time.time() + self.ttl,
                )
            )
        logger.info("Session opened for user %d", user.id)
        return token

    def get(self, token: str) -> SessionUser | None:
        """Return the snapshot for token if the session exists and hasn't expired."""
        if not token:
            return None
        token_hash = hash_session_token(token)
        with connect(self.engine, "read session") as conn:
            row = conn.execute(
                _sessions.select().where(_sessions.c.token_hash == token_hash)
            ).fetchone()
        if row is None:
            return None
        if row.expires_at <= time.time():
            self._delete(token_hash)
            return None
        try:
            return SessionUser.from_dict(json.loads(row.data))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable session for user %d", row.user_id)
            self._delete(token_hash)
            return None

    def save(self, token: str, user: SessionUser) -> bool:
        """Replace the snapshot for token and refresh its expiry.

        Returns False if the session no longer exists.
        """
        with connect(self.engine, "save session", write=True) as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.token_hash == hash_session_token(token))
                .values(
                    user_id=user.id,
                    data=json.dumps(user.to_dict()),
                    expires_at=time.time() + self.ttl,
                )
            )
        return result.rowcount > 0

    def destroy(self, token: str) -> bool:
        """Delete the session for token. Returns False if it was already gone."""
        if not token:
            return False
        return self._delete(hash_session_token(token))

    def destroy_for_user(self, user_id: int) -> int:
        """Delete every session owned by user_id. Returns number of rows removed."""
        with connect(self.engine, "destroy sessions", write=True) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with connect(self.engine, "purge sessions", write=True) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= time.time()))
        return result.rowcount

    def _delete(self, token_hash: str) -> bool:
        with connect(self.engine, "destroy session", write=True) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()
