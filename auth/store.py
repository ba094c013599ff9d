"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_role_change are the
mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the schema. create_user() and update_profile()
  translate the resulting IntegrityError into DuplicateEmailError, so a
  check-then-insert race between two registrations still yields exactly one
  record and one clean domain error.

  record_failed_login() increments the counter inside a single UPDATE
  statement. Two concurrent wrong passwords against the same account are
  serialized by the database and can never both write the same stale value.

Error mapping:
  Any other SQLAlchemyError is re-raised as PersistenceError (cause chained).
  Routes log it and show a generic failure message.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmailError, PersistenceError
from auth.models import MAX_FAILED_ATTEMPTS, ROLE_ADMIN, RoleChange, User
from core.config import get_settings

logger = logging.getLogger("userportal.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("is_locked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_role_changes = Table(
    "role_changes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("old_role", String(30), nullable=False),
    Column("new_role", String(30), nullable=False),
    Column("actor", String(255), nullable=False),
    Column("changed_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/sessions.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def connect(engine: Engine, action: str, *, write: bool = False) -> Iterator[Connection]:
    """Yield a connection, mapping driver failures to PersistenceError.

    write=True opens a transaction that commits on clean exit and rolls
    back on any exception. IntegrityError passes through untouched so
    callers can map it to the right domain error.
    """
    try:
        if write:
            with engine.begin() as conn:
                yield conn
        else:
            with engine.connect() as conn:
                yield conn
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Could not {action}.") from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and the role-change audit trail.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="alice", email="a@x.com", hashed_password=hash_password("secret1")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def _connect(self, action: str, *, write: bool = False):
        return connect(self.engine, action, write=write)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self._connect("count users") as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self._connect("look up user") as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._connect("look up user") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self._connect("list users") as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_admins(self) -> int:
        with self._connect("count admins") as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == ROLE_ADMIN)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateEmailError if the email is already registered.
        """
        try:
            with self._connect("create user", write=True) as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        role=user.role,
                        failed_attempts=user.failed_attempts,
                        is_locked=1 if user.is_locked else 0,
                        created_at=_now_iso(),
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc

    def update_profile(self, user_id: int, username: str, email: str) -> User | None:
        """Replace username and email. Returns the updated User, None if user_id is unknown.

        Raises DuplicateEmailError if the email belongs to another account.
        """
        try:
            with self._connect("update profile", write=True) as conn:
                result = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(username=username, email=email)
                )
                if result.rowcount == 0:
                    return None
                row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc
        return _row_to_user(row)

    def record_failed_login(self, user_id: int) -> tuple[int, bool]:
        """Atomically count one wrong password. Returns (failed_attempts, is_locked).

        The increment and the lock decision happen in one UPDATE, evaluated
        against the row's current value rather than a value read earlier by
        the caller. Returns (0, False) if the user no longer exists.
        """
        next_count = _users.c.failed_attempts + 1
        with self._connect("record failed login", write=True) as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    failed_attempts=next_count,
                    is_locked=case((next_count >= MAX_FAILED_ATTEMPTS, 1), else_=_users.c.is_locked),
                )
            )
            row = conn.execute(
                select(_users.c.failed_attempts, _users.c.is_locked).where(_users.c.id == user_id)
            ).fetchone()
        if row is None:
            return 0, False
        return row.failed_attempts, bool(row.is_locked)

    def reset_failed_logins(self, user_id: int) -> bool:
        """Clear failed_attempts and is_locked. Returns True if a row was updated."""
        with self._connect("reset failed logins", write=True) as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(failed_attempts=0, is_locked=0)
            )
        return result.rowcount > 0

    def set_role(self, user_id: int, new_role: str, actor: str) -> RoleChange | None:
        """Change a user's role and append an audit entry in the same transaction.

        Returns the RoleChange written, or None if user_id is unknown or the
        role is already new_role (nothing changed, nothing audited).
        """
        with self._connect("change role", write=True) as conn:
            row = conn.execute(select(_users.c.role).where(_users.c.id == user_id)).fetchone()
            if row is None or row.role == new_role:
                return None
            changed_at = _now_iso()
            conn.execute(_users.update().where(_users.c.id == user_id).values(role=new_role))
            result = conn.execute(
                _role_changes.insert().values(
                    user_id=user_id,
                    old_role=row.role,
                    new_role=new_role,
                    actor=actor,
                    changed_at=changed_at,
                )
            )
            change_id = result.inserted_primary_key[0]
        return RoleChange(
            id=change_id,
            user_id=user_id,
            old_role=row.role,
            new_role=new_role,
            actor=actor,
            changed_at=changed_at,
        )

    def get_role_history(self, user_id: int) -> list[RoleChange]:
        """Return all role changes for a user, oldest first."""
        with self._connect("read role history") as conn:
            rows = conn.execute(
                _role_changes.select()
                .where(_role_changes.c.user_id == user_id)
                .order_by(_role_changes.c.changed_at, _role_changes.c.id)
            ).fetchall()
        return [_row_to_role_change(r) for r in rows]

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        The audit trail is kept; role_changes rows outlive the user they describe.
        """
        with self._connect("delete user", write=True) as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        failed_attempts=row.failed_attempts,
        is_locked=bool(row.is_locked),
        created_at=row.created_at,
    )


def _row_to_role_change(row) -> RoleChange:
    return RoleChange(
        id=row.id,
        user_id=row.user_id,
        old_role=row.old_role,
        new_role=row.new_role,
        actor=row.actor,
        changed_at=row.changed_at,
    )
