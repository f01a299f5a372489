"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup           -- register; returns account + token pair (201)
  POST /api/v1/auth/login            -- password login; returns account + token pair
  POST /api/v1/auth/refresh          -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout           -- revoke all refresh tokens (requires auth)
  POST /api/v1/auth/forgot-password  -- issue a reset token (same answer for unknown emails)
  POST /api/v1/auth/reset-password   -- set a new password with a reset token
  GET  /api/v1/auth/me               -- current account (requires auth + ACTIVE)

Every handler is a thin adapter: it pulls origin IP / User-Agent off the
request, calls AuthService, and shapes the result. AuthError subclasses raised
by the service are turned into the shared error envelope by the exception
handler in api/main.py.

Security:
  [H2] POST /login and POST /forgot-password are rate-limited per IP.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AccountResponse,
    AuthResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
)
from auth.dependencies import get_auth_service, get_current_account, get_current_claims
from auth.models import AccountView, AuthResult
from auth.tokens import AccessClaims

logger = logging.getLogger("setuauth.api.auth")

# Auth policy:
# - POST /auth/signup, /login, /refresh, /forgot-password, /reset-password: public
# - POST /auth/logout:  requires a valid access token (get_current_claims)
# - GET  /auth/me:      requires a valid access token AND an ACTIVE account
router = APIRouter()

_FORGOT_MESSAGE = "If an account exists for this email, a password reset link has been sent."


def _origin(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("User-Agent")


def _auth_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    body = AuthResponse(
        account=AccountResponse.from_view(result.account),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register a new account. ADMIN cannot be self-assigned; MENTOR starts pending approval."""
    ip, agent = _origin(request)
    result = get_auth_service(request).signup(
        body.full_name,
        body.email,
        body.password,
        body.confirm_password,
        body.role,
        ip=ip,
        agent=agent,
    )
    return _auth_response(result, status_code=201)


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password answer the same 401 so the endpoint
    cannot be used to discover registered emails.
    """
    ip, agent = _origin(request)
    result = get_auth_service(request).login(body.email, body.password, ip=ip, agent=agent)
    return _auth_response(result)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token. A token that was already used answers 401 token_reused."""
    ip, agent = _origin(request)
    pair = get_auth_service(request).refresh(body.refresh_token, ip=ip, agent=agent)
    resp = JSONResponse(
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(login_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> ForgotPasswordResponse:
    """Start a password reset.

    The plaintext token goes to app.state.reset_delivery (e.g. a mailer) when
    one is configured, and into the response body only when
    EXPOSE_RESET_TOKEN=true. The response is identical for unknown emails.
    """
    ip, agent = _origin(request)
    service = get_auth_service(request)
    ticket = service.request_password_reset(body.email, ip=ip, agent=agent)
    if ticket.reset_token is not None:
        deliver = getattr(request.app.state, "reset_delivery", None)
        if deliver is not None:
            deliver(body.email.strip().lower(), ticket.reset_token)
        else:
            logger.info("Password reset token issued but no reset_delivery is configured")
    exposed = ticket.reset_token if service.settings.expose_reset_token else None
    return ForgotPasswordResponse(message=_FORGOT_MESSAGE, reset_token=exposed)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password. All existing sessions are signed out."""
    ip, agent = _origin(request)
    get_auth_service(request).confirm_password_reset(
        body.token, body.new_password, body.confirm_password, ip=ip, agent=agent
    )
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, claims: AccessClaims = Depends(get_current_claims)) -> MessageResponse:
    """Revoke every refresh token of the caller. Safe to call repeatedly."""
    ip, agent = _origin(request)
    get_auth_service(request).logout(claims.account_id, ip=ip, agent=agent)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=AccountResponse)
def me(account: AccountView = Depends(get_current_account)) -> AccountResponse:
    """Return the currently authenticated account."""
    return AccountResponse.from_view(account)
