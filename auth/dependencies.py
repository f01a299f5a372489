"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". They are verified
offline by the token codec -- no store hit -- which is enough for
get_current_claims(). Routes that must also know the account is still active
depend on get_current_account(), which loads the row and applies the status
gate with the same status-specific messages as login.

require_roles() builds a dependency that admits only the listed roles;
role_at_least() compares against ROLE_HIERARCHY for "this role or above".

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi because this module is part of the FastAPI dependency injection
system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.errors import AccountNotActive, AuthError, NotFound
from auth.models import ROLE_HIERARCHY, AccountStatus, AccountView, Role
from auth.service import AuthService
from auth.tokens import AccessClaims, extract_bearer


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService the lifespan stored on app.state."""
    return request.app.state.auth_service


def get_current_claims(request: Request) -> AccessClaims:
    """Require a valid access token. Raises HTTP 401 otherwise.

    An expired token answers code "token_expired" so clients know to call
    /auth/refresh; any other failure answers "token_invalid".
    """
    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        raise _unauthorized("unauthorized", "No authentication token provided.")
    service = get_auth_service(request)
    try:
        return service.codec.verify_access(token)
    except AuthError as exc:
        raise _unauthorized(exc.code, exc.message) from exc


def get_current_account(
    request: Request,
    claims: AccessClaims = Depends(get_current_claims),
) -> AccountView:
    """Require a valid token AND a live, ACTIVE account behind it."""
    service = get_auth_service(request)
    try:
        account = service.get_account(claims.account_id)
    except NotFound as exc:
        raise _unauthorized("unauthorized", "User not found.") from exc
    if account.status is not AccountStatus.ACTIVE:
        exc = AccountNotActive(account.status)
        raise HTTPException(status_code=403, detail={"code": exc.code, "message": exc.message})
    return account


def role_at_least(role: Role, minimum: Role) -> bool:
    return ROLE_HIERARCHY[role] >= ROLE_HIERARCHY[minimum]


def require_roles(*roles: Role) -> Callable[..., AccountView]:
    """Return a dependency admitting only accounts whose role is in roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        async def route(account: AccountView = Depends(require_roles(Role.ADMIN))): ...
    """
    allowed = set(roles)

    def dependency(account: AccountView = Depends(get_current_account)) -> AccountView:
        if account.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "forbidden",
                    "message": f"Access denied. Required roles: {', '.join(r.value for r in roles)}",
                },
            )
        return account

    return dependency


require_admin = require_roles(Role.ADMIN)
