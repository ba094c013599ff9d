"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Shape plus constructor-time invariants; the store and
the services do the work. A record that violates an invariant cannot be
built, so it cannot be persisted either.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from auth.errors import ValidationError

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

# Consecutive wrong passwords before an account locks.
MAX_FAILED_ATTEMPTS = 5


@dataclass
class User:
    """A registered account.

    email is the login key and is unique across all records (enforced by
    the store). hashed_password is always a bcrypt hash -- the services hash
    before constructing a User, never after.

    failed_attempts / is_locked are mutated only by the login flow and by
    the admin unlock action. Once locked, the account stays locked until
    that explicit reset.

    id is None before the record is written to the database.
    """

    username: str
    email: str
    hashed_password: str
    role: str = ROLE_USER
    failed_attempts: int = 0
    is_locked: bool = False
    id: int | None = None
    created_at: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValidationError(f"Unknown role {self.role!r}.")
        if self.failed_attempts < 0:
            raise ValidationError("failed_attempts cannot be negative.")
        if self.is_locked and self.failed_attempts < MAX_FAILED_ATTEMPTS:
            raise ValidationError("An account can only be locked after repeated failed logins.")

    def to_session_user(self) -> SessionUser:
        if self.id is None:
            raise ValidationError("Cannot build a session for an unsaved user.")
        return SessionUser(id=self.id, username=self.username, email=self.email, role=self.role)


@dataclass
class SessionUser:
    """Denormalized snapshot of a User held in the server-side session.

    Copied at login, refreshed on profile edits. The authorization guards
    read only this snapshot, so a role change made elsewhere applies from
    the affected user's next login.
    """

    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> SessionUser:
        return cls(
            id=int(data["id"]),
            username=str(data["username"]),
            email=str(data["email"]),
            role=str(data["role"]),
        )


@dataclass
class SessionContext:
    """The session attached to one request: the raw cookie token plus its snapshot.

    Resolved per request by auth.dependencies.get_session_context() and
    passed explicitly into the handlers and services that need it.
    """

    token: str
    user: SessionUser


@dataclass
class RoleChange:
    """Append-only audit entry written whenever a user's role changes.

    actor is the acting admin's email, or "cli:<os user>" for changes made
    with scripts/manage_users.py. Records are never updated or deleted.
    """

    user_id: int
    old_role: str
    new_role: str
    actor: str
    changed_at: str = ""  # ISO 8601, set by store on insert
    id: int | None = None
