"""
API request and response models for the PollGate auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal representation. Route handlers map
between the two.

Request fields default to "" rather than being required: the orchestrator owns
the "X is required" messages, so a missing field must reach it instead of
failing early with a generic 422.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=1024)
    redirect: Optional[str] = Field(
        default=None,
        max_length=2048,
        description="Path to return to after login. Only server-local paths are honoured.",
    )


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    name: str = Field(default="", max_length=256)
    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=1024)


class ResendRequest(BaseModel):
    """Request body for POST /api/v1/auth/resend-verification."""

    email: str = Field(default="", max_length=320)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthResponse(BaseModel):
    """Successful auth operation.

    error is always null here; failures use ErrorResponse. Session tokens are
    never part of the body -- they travel as httpOnly cookies.
    """

    model_config = ConfigDict(frozen=True)

    error: None = None
    message: Optional[str] = None
    requires_verification: bool = False
    redirect_to: Optional[str] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
