"""
API response models for the UserPortal JSON endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from auth.models import SessionUser

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Identity of the current session, as stored in its snapshot."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    role: str

    @classmethod
    def from_session_user(cls, user: SessionUser) -> "MeResponse":
        return cls(user_id=user.id, username=user.username, email=user.email, role=user.role)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every JSON error response."""

    error: ErrorDetail
