"""
web/routes.py -- Jinja2 template routes for the UserPortal web UI.

These routes serve server-rendered HTML forms. Every handler receives the
request's session explicitly (a SessionContext from auth/dependencies.py)
rather than reading shared state.

Error policy:
  Domain errors from the services are shown back on the same form with their
  message (status 200). PersistenceError is logged with its cause and the
  user sees only a generic "... failed. Try again." line.

Routes:
  GET    /                              -- landing page
  GET    /register                      -- registration form
  POST   /register                      -- create account, 303 to /login
  GET    /login                         -- login form
  POST   /login                         -- authenticate, 303 to /dashboard (rate limited)
  GET    /dashboard                     -- signed-in landing page (session)
  GET    /admin                         -- user administration (session + admin)
  POST   /admin/users/{user_id}/role    -- audited role change (session + admin)
  POST   /admin/users/{user_id}/unlock  -- clear lockout (session + admin)
  POST   /logout                        -- destroy session, 303 to /
  GET    /profile/edit                  -- profile form (session)
  PUT    /profile                       -- update own username/email (session)
  DELETE /profile                       -- delete own account + session (session)

PUT and DELETE arrive from HTML forms as POST ?_method=... and are rewritten
by the method_override middleware in api/main.py.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth.dependencies import require_admin, require_session, try_get_session_context
from auth.errors import AuthError, PersistenceError, UserNotFound
from auth.models import ROLES, SessionContext
from auth.profile import ProfileService
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings

logger = logging.getLogger("userportal.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose the session lookup as a Jinja2 global so layout.html can show the
# signed-in user's name without every handler passing it in.
templates.env.globals["try_get_session_context"] = try_get_session_context
router = APIRouter()

_settings = get_settings()


def _auth(request: Request) -> AuthService:
    return request.app.state.auth_service


def _profiles(request: Request) -> ProfileService:
    return request.app.state.profile_service


def _see_other(url: str) -> RedirectResponse:
    resp = RedirectResponse(url, status_code=303)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# GET / -- landing page
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "index.html", {})


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "register.html", {"error": None, "form_data": {}})


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    username: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
):
    """Create an account. Registration never signs the user in."""
    form_data = {"username": username or "", "email": email or ""}
    try:
        _auth(request).register(username, email, password)
    except PersistenceError:
        logger.exception("Registration failed")
        error = "Registration failed. Try again."
    except AuthError as exc:
        error = exc.message
    else:
        return _see_other("/login")
    return templates.TemplateResponse(request, "register.html", {"error": error, "form_data": form_data})


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "login.html", {"error": None, "form_data": {}})


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(_settings.login_rate_limit)  # below @router so the route calls the limited wrapper
def login_post(
    request: Request,
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
):
    """Handle the login form. On success, open a session and go to /dashboard.

    Any session the browser already held is destroyed first, so a token
    planted before login never becomes an authenticated one.
    """
    auth = _auth(request)
    try:
        ctx = auth.login(email, password)
    except PersistenceError:
        logger.exception("Login failed")
        error = "Login failed. Try again."
    except AuthError as exc:
        error = exc.message
    else:
        auth.logout(request.cookies.get(_settings.session_cookie_name))
        resp = _see_other("/dashboard")
        set_session_cookie(resp, ctx.token)
        return resp
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error": error, "form_data": {"email": email or ""}},
    )


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Destroy the session (best effort) and clear the cookie."""
    _auth(request).logout(request.cookies.get(_settings.session_cookie_name))
    resp = _see_other("/")
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# GET /dashboard
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request, ctx: SessionContext = Depends(require_session)) -> HTMLResponse:
    return templates.TemplateResponse(request, "dashboard.html", {"user": ctx.user})


# ---------------------------------------------------------------------------
# Administration -- require_session runs first so a signed-out visitor is
# sent to /login; require_admin then turns a non-admin away with 403.
# ---------------------------------------------------------------------------


def _render_admin(request: Request, ctx: SessionContext, error: Optional[str] = None, status_code: int = 200):
    user_store: UserStore = request.app.state.user_store
    try:
        users = user_store.list_users()
    except PersistenceError:
        logger.exception("Listing users failed")
        users = []
        error = error or "Could not load users. Try again."
    return templates.TemplateResponse(
        request,
        "admin.html",
        {"user": ctx.user, "users": users, "roles": ROLES, "error": error},
        status_code=status_code,
    )


@router.get("/admin", response_class=HTMLResponse, dependencies=[Depends(require_session)])
def admin_page(request: Request, ctx: SessionContext = Depends(require_admin)) -> HTMLResponse:
    return _render_admin(request, ctx)


@router.post("/admin/users/{user_id}/role", response_class=HTMLResponse, dependencies=[Depends(require_session)])
def admin_change_role(
    request: Request,
    user_id: int,
    role: Optional[str] = Form(default=None),
    ctx: SessionContext = Depends(require_admin),
):
    """Change a user's role. Audited with the acting admin's email."""
    try:
        _auth(request).promote_user(ctx.user.email, user_id, role or "")
    except PersistenceError:
        logger.exception("Role change failed for user %d", user_id)
        return _render_admin(request, ctx, "Role change failed. Try again.")
    except AuthError as exc:
        return _render_admin(request, ctx, exc.message)
    return _see_other("/admin")


@router.post("/admin/users/{user_id}/unlock", response_class=HTMLResponse, dependencies=[Depends(require_session)])
def admin_unlock(request: Request, user_id: int, ctx: SessionContext = Depends(require_admin)):
    """Reset a locked account's failed-login counter."""
    try:
        _auth(request).unlock_user(ctx.user.email, user_id)
    except PersistenceError:
        logger.exception("Unlock failed for user %d", user_id)
        return _render_admin(request, ctx, "Unlock failed. Try again.")
    except AuthError as exc:
        return _render_admin(request, ctx, exc.message)
    return _see_other("/admin")


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/profile/edit", response_class=HTMLResponse)
def profile_edit_form(request: Request, ctx: SessionContext = Depends(require_session)):
    """Render the edit form from the stored record, not the session snapshot."""
    try:
        user = _profiles(request).view_profile(ctx.user)
    except UserNotFound:
        # Record deleted out from under a live session: end the session.
        _auth(request).logout(ctx.token)
        resp = _see_other("/login")
        clear_session_cookie(resp)
        return resp
    except PersistenceError:
        logger.exception("Loading profile failed for user %d", ctx.user.id)
        user = ctx.user
        return templates.TemplateResponse(
            request,
            "edit_profile.html",
            {"user": user, "error": "Could not load profile. Try again."},
        )
    return templates.TemplateResponse(request, "edit_profile.html", {"user": user, "error": None})


@router.put("/profile", response_class=HTMLResponse)
def profile_update(
    request: Request,
    username: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    ctx: SessionContext = Depends(require_session),
):
    """Update username/email on the record and in the session snapshot."""
    try:
        _profiles(request).update_profile(ctx, username, email)
    except PersistenceError:
        logger.exception("Profile update failed for user %d", ctx.user.id)
        error = "Failed to update profile."
    except AuthError as exc:
        error = exc.message
    else:
        return _see_other("/dashboard")
    return templates.TemplateResponse(request, "edit_profile.html", {"user": ctx.user, "error": error})


@router.delete("/profile")
def profile_delete(request: Request, ctx: SessionContext = Depends(require_session)) -> RedirectResponse:
    """Delete the account, then the session. A failed delete keeps the session."""
    try:
        _profiles(request).delete_profile(ctx)
    except PersistenceError:
        logger.exception("Profile delete failed for user %d", ctx.user.id)
        return _see_other("/dashboard")
    resp = _see_other("/")
    clear_session_cookie(resp)
    return resp
