"""
auth/service.py -- Registration, login with lockout, logout, and admin actions.

Login state machine (evaluated in order, first failure wins):
  1. MissingCredentials  -- email or password absent
  2. UserNotFound        -- no record for the email
  3. AccountLocked       -- checked BEFORE the password, so a locked account
                            never reveals whether a guess was right
  4. IncorrectPassword   -- counter incremented atomically; the 5th miss locks
  success                -- counter and lock cleared, session opened

There is no cooldown: a lock holds until unlock_user() (admin page or
scripts/manage_users.py) resets it.

Role changes only happen through promote_user(), which callers reach via the
admin-guarded route or the CLI. Every change is written to the role_changes
audit table and logged on the "userportal.audit" logger.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    AccountLocked,
    DuplicateEmailError,
    IncorrectPassword,
    MissingCredentials,
    PersistenceError,
    UserNotFound,
    ValidationError,
)
from auth.models import MAX_FAILED_ATTEMPTS, ROLE_ADMIN, ROLE_USER, ROLES, RoleChange, SessionContext, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password, verify_password

logger = logging.getLogger("userportal.auth")
audit_logger = logging.getLogger("userportal.audit")

MIN_PASSWORD_LENGTH = 6


def _clean(value: str | None) -> str:
    return (value or "").strip()


class AuthService:
    def __init__(self, users: UserStore, sessions: SessionStore) -> None:
        self.users = users
        self.sessions = sessions

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username: str | None, email: str | None, password: str | None) -> None:
        """Create a role=user account. Does not sign the new user in.

        Raises ValidationError on missing fields or a short password and
        DuplicateEmailError if the email is taken.
        """
        username = _clean(username)
        email = _clean(email)
        if not username or not email or not (password or "").strip() or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"All fields are required and password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if self.users.get_by_email(email) is not None:
            raise DuplicateEmailError()

        user = User(username=username, email=email, hashed_password=hash_password(password), role=ROLE_USER)
        user_id = self.users.create_user(user)
        logger.info("Registered user %d", user_id)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> SessionContext:
        """Authenticate and open a session. Returns the new SessionContext."""
        email = _clean(email)
        if not email or not password:
            raise MissingCredentials()

        user = self.users.get_by_email(email)
        if user is None:
            raise UserNotFound()
        if user.is_locked:
            logger.info("Login refused for locked user %d", user.id)
            raise AccountLocked()

        if not verify_password(password, user.hashed_password):
            attempts, locked = self.users.record_failed_login(user.id)
            if locked:
                logger.warning("User %d locked after %d failed logins", user.id, attempts)
            else:
                logger.info("Failed login for user %d (%d/%d)", user.id, attempts, MAX_FAILED_ATTEMPTS)
            raise IncorrectPassword()

        self.users.reset_failed_logins(user.id)
        snapshot = user.to_session_user()
        token = self.sessions.create(snapshot)
        logger.info("User %d logged in", user.id)
        return SessionContext(token=token, user=snapshot)

    def logout(self, token: str | None) -> None:
        """Destroy the session behind token. Never raises.

        A failed destroy is logged and swallowed: the caller clears the cookie
        regardless, so from the client's side the session is gone either way.
        """
        if not token:
            return
        try:
            self.sessions.destroy(token)
        except PersistenceError:
            logger.exception("Session destroy failed during logout")

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def promote_user(self, actor: str, user_id: int, role: str = ROLE_ADMIN) -> RoleChange | None:
        """Set user_id's role and record who did it.

        Returns the RoleChange, or None when the user already had that role.
        The affected user's live sessions keep their old snapshot until their
        next login.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role {role!r}.")
        target = self.users.get_by_id(user_id)
        if target is None:
            raise UserNotFound()
        if target.role == ROLE_ADMIN and role != ROLE_ADMIN and self.users.count_admins() <= 1:
            raise ValidationError("Cannot demote the last admin.")
        change = self.users.set_role(user_id, role, actor)
        if change is not None:
            audit_logger.warning(
                "Role of user %d changed %s -> %s by %s", user_id, change.old_role, change.new_role, actor
            )
        return change

    def unlock_user(self, actor: str, user_id: int) -> None:
        """Clear the lockout on user_id. The only way out of a lock."""
        if not self.users.reset_failed_logins(user_id):
            raise UserNotFound()
        audit_logger.warning("User %d unlocked by %s", user_id, actor)
