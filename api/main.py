"""
api/main.py -- FastAPI application entry point for UserPortal.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette puts the most recently
registered middleware on the outside):
  1. log_requests          -- one access-log line per request
  2. method_override       -- POST ?_method=PUT|DELETE from HTML forms
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, services, session purge task) and
shutdown (cancel purge task, dispose engines) symmetrically.

Error policy:
  Domain errors (validation, duplicate, locked, ...) never reach this module;
  web/routes.py re-renders the form with their message. What arrives here is
  navigational (NotAuthenticated -> 302 /login), authorization (Forbidden ->
  403), or unexpected (500, details logged, never shown). /api/ paths get the
  JSON ErrorResponse envelope instead of HTML.
"""

from __future__ import annotations

import asyncio
import html
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import Forbidden, NotAuthenticated, PersistenceError
from auth.profile import ProfileService
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("userportal.api")

_settings = get_settings()

_PURGE_INTERVAL_SECONDS = 60 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions once an hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        try:
            removed = app.state.session_store.purge_expired()
        except PersistenceError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The services hold references to the stores, so the stores are
    created first and closed last.
    """
    logger.info("UserPortal starting up")
    app.state.user_store = UserStore()
    app.state.session_store = SessionStore()
    app.state.auth_service = AuthService(app.state.user_store, app.state.session_store)
    app.state.profile_service = ProfileService(app.state.user_store, app.state.session_store)
    logger.info(
        "Stores initialized (admins=%d, session_ttl=%ds)",
        app.state.user_store.count_admins(),
        app.state.session_store.ttl,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("UserPortal shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="UserPortal",
    description="Session-authenticated accounts with lockout, roles, and self-service profiles.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

_OVERRIDABLE_METHODS = {"PUT", "PATCH", "DELETE"}


@app.middleware("http")
async def method_override(request: Request, call_next):
    """Let HTML forms reach PUT/DELETE routes via POST /path?_method=PUT.

    Only POST can be overridden, and only to a fixed set of verbs. The scope
    is rewritten before routing, so the router sees the intended method.
    """
    if request.method == "POST":
        override = request.query_params.get("_method", "").upper()
        if override in _OVERRIDABLE_METHODS:
            request.scope["method"] = override
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _json_error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(NotAuthenticated)
async def not_authenticated_handler(request: Request, exc: NotAuthenticated) -> Response:
    """Send browsers to the login form; API clients get a 401."""
    if _is_api(request):
        return _json_error(401, "unauthorized", exc.message)
    return RedirectResponse("/login", status_code=302)


@app.exception_handler(Forbidden)
async def forbidden_handler(request: Request, exc: Forbidden) -> Response:
    logger.info("Forbidden: %s %s", request.method, request.url.path)
    if _is_api(request):
        return _json_error(403, "forbidden", exc.message)
    return HTMLResponse(exc.message, status_code=403)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Return 429 when a rate limit is exceeded, with Retry-After."""
    retry_after = int(getattr(exc, "retry_after", 60))
    if _is_api(request):
        response: Response = _json_error(429, "rate_limited", "Too many requests.", str(exc))
    else:
        response = HTMLResponse("Too many requests. Try again later.", status_code=429)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    if _is_api(request):
        return _json_error(422, "validation_error", "Request validation failed.", str(exc.errors()))
    return HTMLResponse("Bad request.", status_code=422)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Structured JSON for /api/ paths, a small HTML page everywhere else.

    Unknown paths land here as 404s from the router.
    """
    if _is_api(request):
        return _json_error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    message = "Page not found" if exc.status_code == 404 else html.escape(str(exc.detail))
    return HTMLResponse(f"<h1>{exc.status_code}</h1><p>{message}</p>", status_code=exc.status_code)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if _is_api(request):
        return _json_error(500, "internal_error", "An unexpected error occurred.")
    return HTMLResponse("<h1>500</h1><p>Something went wrong. Try again.</p>", status_code=500)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the user store answers."""
    database = "ok"
    try:
        request.app.state.user_store.has_users()
    except PersistenceError:
        logger.exception("Health check: user store unavailable")
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
