"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure the orchestrator can report is an AuthError subclass carrying a
stable code and the HTTP status the API layer maps it to. The core raises
these; api/main.py turns them into the shared error envelope.

Credential errors are deliberately coarse: InvalidCredentials is raised for an
unknown email, a soft-deleted account and a wrong password alike, so a caller
cannot probe which emails are registered.
"""

from __future__ import annotations

import math

from auth.models import STATUS_MESSAGES, AccountStatus


class AuthError(Exception):
    """Base class for all authentication failures."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None, *, detail: dict | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)


class ValidationFailed(AuthError):
    """Client-correctable input problems. Carries every violation, not just the first."""

    code = "validation_error"
    status_code = 400
    default_message = "Validation failed."

    def __init__(self, violations: list[str], message: str | None = None) -> None:
        self.violations = list(violations)
        super().__init__(message, detail={"violations": self.violations})


class EmailAlreadyRegistered(ValidationFailed):
    code = "email_taken"
    status_code = 409

    def __init__(self) -> None:
        super().__init__(["An account with this email already exists."], "Email is already registered.")


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class AccountLocked(AuthError):
    code = "account_locked"
    status_code = 423

    def __init__(self, remaining_seconds: float) -> None:
        self.remaining_seconds = max(1, math.ceil(remaining_seconds))
        minutes = math.ceil(self.remaining_seconds / 60)
        super().__init__(
            f"Account is temporarily locked due to too many failed login attempts. "
            f"Try again in {minutes} minute{'s' if minutes != 1 else ''}.",
            detail={"remaining_seconds": self.remaining_seconds},
        )


class AccountNotActive(AuthError):
    code = "account_not_active"
    status_code = 403
    default_message = "Your account is not active."

    def __init__(self, status: AccountStatus) -> None:
        self.reason = status
        super().__init__(STATUS_MESSAGES.get(status) or None, detail={"status": status.value})


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    default_message = "Token has expired."


class TokenMalformed(AuthError):
    code = "token_invalid"
    status_code = 401
    default_message = "Token is invalid."


class TokenAlreadyUsed(AuthError):
    """A single-use token was presented again. Treat as possible theft, never retry."""

    code = "token_reused"
    status_code = 401
    default_message = "Token has already been used. Please log in again."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_reset_token"
    status_code = 400
    default_message = "Reset token is invalid or has expired."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class Internal(AuthError):
    """Hashing or storage failure. The message is never shown to clients."""

    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."
