"""
auth/errors.py -- Exception taxonomy for the authentication state machine.

Every error carries a user-safe `message`. Route handlers catch the domain
errors (validation, duplicate, not-found, locked, incorrect-password) and
re-render the form with that message; they are never server faults.

PersistenceError wraps store failures. Its message is generic on purpose --
the underlying cause is chained (raise ... from exc) for the logs only.

NotAuthenticated and Forbidden are raised by the guards in
auth/dependencies.py and turned into a redirect / 403 by api/main.py.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all UserPortal authentication/authorization errors."""

    message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Raised when submitted input is missing or malformed."""

    message = "Invalid input."


class MissingCredentials(ValidationError):
    """Raised when a login form arrives without an email or password."""

    message = "Both email and password are required."


class DuplicateEmailError(AuthError):
    """Raised when an email is already bound to another account."""

    message = "Email already registered."


class UserNotFound(AuthError):
    """Raised when no user record matches the lookup key."""

    message = "User not found."


class AccountLocked(AuthError):
    """Raised on login against an account locked by repeated failures."""

    message = "Your account is locked due to too many failed attempts."


class IncorrectPassword(AuthError):
    """Raised when the password does not match the stored hash."""

    message = "Incorrect password."


class Forbidden(AuthError):
    """Raised by require_role() when the session role is insufficient."""

    message = "Access Denied"


class NotAuthenticated(AuthError):
    """Raised by require_session() when the request carries no live session."""

    message = "Authentication required."


class PersistenceError(AuthError):
    """Raised when the record or session store is unavailable or a write fails."""

    message = "A storage error occurred."
