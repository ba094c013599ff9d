"""
auth/profile.py -- Read, update, and delete the signed-in user's own record.

The session snapshot and the stored record must agree on username and email
after every edit, so update_profile() writes the store first and then copies
the stored values back into the session.

delete_profile() deletes the record before touching the session. If the
delete raises, the session stays intact; a live session is never left
without a backing record because of a half-finished delete.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from auth.errors import PersistenceError, UserNotFound, ValidationError
from auth.models import SessionContext, SessionUser, User
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("userportal.auth.profile")


class ProfileService:
    def __init__(self, users: UserStore, sessions: SessionStore) -> None:
        self.users = users
        self.sessions = sessions

    def view_profile(self, session_user: SessionUser) -> User:
        user = self.users.get_by_id(session_user.id)
        if user is None:
            raise UserNotFound()
        return user

    def update_profile(self, ctx: SessionContext, username: str | None, email: str | None) -> SessionUser:
        """Change username/email on the record and mirror them into the session.

        Raises ValidationError if either field is empty, DuplicateEmailError
        if the email belongs to someone else, UserNotFound if the record is gone.
        """
        username = (username or "").strip()
        email = (email or "").strip()
        if not username or not email:
            raise ValidationError("All fields are required.")

        updated = self.users.update_profile(ctx.user.id, username, email)
        if updated is None:
            raise UserNotFound()

        snapshot = SessionUser(id=updated.id, username=updated.username, email=updated.email, role=ctx.user.role)
        if not self.sessions.save(ctx.token, snapshot):
            logger.warning("User %d updated their profile without a live session", updated.id)
        ctx.user = snapshot
        logger.info("User %d updated their profile", updated.id)
        return snapshot

    def delete_profile(self, ctx: SessionContext) -> None:
        """Delete the record, then every session the user holds.

        A repeat call finds no record and still clears the session without
        raising, so a double-submitted delete form is harmless. Once the
        record is gone, a session-store failure is logged rather than raised:
        the caller must go on to clear the cookie.
        """
        deleted = self.users.delete_user(ctx.user.id)
        if not deleted:
            logger.info("Profile delete for user %d found no record", ctx.user.id)
        try:
            self.sessions.destroy(ctx.token)
            self.sessions.destroy_for_user(ctx.user.id)
        except PersistenceError:
            # The record is gone either way; the caller still clears the cookie.
            logger.exception("Session cleanup failed after deleting user %d", ctx.user.id)
        if deleted:
            logger.info("User %d deleted their account", ctx.user.id)
