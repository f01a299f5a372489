"""
API request and response models for setu-auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field limits here are transport hygiene only (reject absurd payloads early).
The real rules -- password strength, email format, role policy -- live in
auth/service.py so every caller gets them, not just HTTP clients.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AccountStatus, AccountView, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    Passwords are taken byte-for-byte; name and email are trimmed by the service.
    """

    full_name: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=255)
    confirm_password: str = Field(max_length=255)
    role: Role


class LoginRequest(BaseModel):
    email: str = Field(max_length=320)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(max_length=320)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=32, max_length=255)
    new_password: str = Field(max_length=255)
    confirm_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Client-safe account view. Never carries the password hash or tokens."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    email: str
    role: Role
    status: AccountStatus
    email_verified: bool
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(
            id=view.id,
            full_name=view.full_name,
            email=view.email,
            role=view.role,
            status=view.status,
            email_verified=view.email_verified,
            created_at=view.created_at.isoformat() if view.created_at else None,
            last_login=view.last_login.isoformat() if view.last_login else None,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(TokenResponse):
    """Response for signup and login: the account plus a token pair."""

    account: AccountResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ForgotPasswordResponse(MessageResponse):
    """reset_token is only populated when EXPOSE_RESET_TOKEN is enabled."""

    reset_token: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
