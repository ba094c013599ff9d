"""
api/routes/v1/auth.py -- Session identity endpoint for scripts and front-end code.

Routes:
  GET  /api/v1/auth/me   -- snapshot of the current session (requires session)

Auth policy:
  The same session cookie as the web UI. Without one, the NotAuthenticated
  handler in api/main.py answers 401 JSON for /api/ paths instead of the
  302 /login the HTML pages get.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import MeResponse
from auth.dependencies import require_session
from auth.models import SessionContext

router = APIRouter()


@router.get("/auth/me", response_model=MeResponse)
async def me(ctx: SessionContext = Depends(require_session)) -> JSONResponse:
    """Return identity information for the current session."""
    resp = JSONResponse(content=MeResponse.from_session_user(ctx.user).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp
