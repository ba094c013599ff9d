"""
auth/dependencies.py -- FastAPI Depends() helpers for session authorization.

The session cookie is resolved once per request into a SessionContext and
handed to the route as an argument. Nothing about the current user lives in
module-level state.

try_get_session_context() is the soft variant (returns None on failure).
require_session() wraps it and raises NotAuthenticated -> 302 /login.
require_role(role) raises Forbidden -> 403 unless the session role matches.
A request with no session at all is also Forbidden there: the role guard
fails closed even when used without require_session in front of it.

Guards read only the session snapshot, never the users table. A role change
or lock applied by an admin takes effect on the affected user's next login.

Layer rule: no imports from web/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from auth.errors import Forbidden, NotAuthenticated, PersistenceError
from auth.models import ROLE_ADMIN, SessionContext
from auth.sessions import SessionStore
from core.config import get_settings

logger = logging.getLogger("userportal.auth")


def try_get_session_context(request: Request) -> SessionContext | None:
    """Return the request's live SessionContext, or None.

    Never raises -- a session store outage reads as "not signed in". The
    result is memoized on request.state so every guard in the chain (and the
    templates) sees the same lookup.
    """
    if hasattr(request.state, "session_ctx"):
        return request.state.session_ctx

    ctx: SessionContext | None = None
    token = request.cookies.get(get_settings().session_cookie_name)
    if token:
        sessions: SessionStore = request.app.state.session_store
        try:
            user = sessions.get(token)
        except PersistenceError:
            logger.exception("Session lookup failed")
            user = None
        if user is not None:
            ctx = SessionContext(token=token, user=user)
    request.state.session_ctx = ctx
    return ctx


def require_session(request: Request) -> SessionContext:
    """Require a live session. Raises NotAuthenticated (302 to /login) otherwise.

    Use as a FastAPI dependency:
        @router.get("/dashboard")
        def route(ctx: SessionContext = Depends(require_session)): ...
    """
    ctx = try_get_session_context(request)
    if ctx is None:
        raise NotAuthenticated()
    return ctx


def require_role(role: str) -> Callable[[Request], SessionContext]:
    """Build a dependency that admits only sessions whose snapshot role == role."""

    def _guard(request: Request) -> SessionContext:
        ctx = try_get_session_context(request)
        if ctx is None or ctx.user.role != role:
            raise Forbidden()
        return ctx

    _guard.__name__ = f"require_role_{role}"
    return _guard


require_admin = require_role(ROLE_ADMIN)
