"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and the orchestrator do the work.

Role and AccountStatus are closed sets. Every behaviour that branches on them
goes through one of the mapping tables below instead of a chain of if/elif
comparisons. The tables are checked for exhaustiveness at import time, so
adding a member without extending every table fails on the first import.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    STUDENT = "STUDENT"  # ordinary user
    CORPORATE = "CORPORATE"  # organization user
    UNIVERSITY = "UNIVERSITY"  # institution user
    MENTOR = "MENTOR"
    ADMIN = "ADMIN"


class AccountStatus(str, Enum):
    PENDING_EMAIL_VERIFICATION = "PENDING_EMAIL_VERIFICATION"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class TokenKind(str, Enum):
    REFRESH = "REFRESH"
    RESET_PASSWORD = "RESET_PASSWORD"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# ---------------------------------------------------------------------------
# Mapping tables
# ---------------------------------------------------------------------------

# Status assigned at account creation. MENTOR accounts wait for an
# administrator to approve them.
DEFAULT_STATUS_BY_ROLE: dict[Role, AccountStatus] = {
    Role.STUDENT: AccountStatus.ACTIVE,
    Role.CORPORATE: AccountStatus.ACTIVE,
    Role.UNIVERSITY: AccountStatus.ACTIVE,
    Role.MENTOR: AccountStatus.PENDING_APPROVAL,
    Role.ADMIN: AccountStatus.ACTIVE,
}

# Roles a visitor may pick on the public signup form.
SELF_REGISTRABLE: dict[Role, bool] = {
    Role.STUDENT: True,
    Role.CORPORATE: True,
    Role.UNIVERSITY: True,
    Role.MENTOR: True,
    Role.ADMIN: False,
}

# Higher = more permissions. Used by role_at_least() in auth/dependencies.py.
ROLE_HIERARCHY: dict[Role, int] = {
    Role.STUDENT: 1,
    Role.CORPORATE: 2,
    Role.UNIVERSITY: 2,
    Role.MENTOR: 3,
    Role.ADMIN: 100,
}

# User-facing reason shown when a non-active account tries to log in.
STATUS_MESSAGES: dict[AccountStatus, str] = {
    AccountStatus.PENDING_EMAIL_VERIFICATION: "Please verify your email address before logging in.",
    AccountStatus.PENDING_APPROVAL: "Your account is pending approval.",
    AccountStatus.ACTIVE: "",
    AccountStatus.SUSPENDED: "Your account has been suspended.",
    AccountStatus.DELETED: "Your account has been deleted.",
}

for _table in (DEFAULT_STATUS_BY_ROLE, SELF_REGISTRABLE, ROLE_HIERARCHY):
    assert set(_table) == set(Role), f"role table missing members: {set(Role) - set(_table)}"
assert set(STATUS_MESSAGES) == set(AccountStatus), "STATUS_MESSAGES must cover every AccountStatus"
del _table


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Account:
    """A registered identity.

    password_hash is the bcrypt hash; the plaintext is never held past the
    request that supplied it. deleted_at is set by soft delete -- rows are
    never removed, and the email becomes available again for a new signup.
    """

    email: str
    full_name: str
    password_hash: str
    role: Role
    status: AccountStatus
    id: str | None = None
    email_verified: bool = False
    login_attempts: int = 0
    locked_until: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class TokenRecord:
    """Stored form of a single-use opaque token (refresh or password reset).

    token_hash is HMAC-SHA256 of the token string. The string itself is
    returned once at issue time and never persisted.
    """

    account_id: str
    token_hash: str
    kind: TokenKind
    expires_at: datetime
    id: str | None = None
    used: bool = False
    used_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


@dataclass
class AuditEvent:
    """One append-only audit log entry. account_id is None before identification."""

    action: str
    outcome: AuditOutcome
    account_id: str | None = None
    resource: str = "auth"
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class RequestContext:
    """Origin of an inbound request, captured for token records and audit."""

    ip_address: str | None = None
    user_agent: str | None = None


# ---------------------------------------------------------------------------
# Views returned to callers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountView:
    """Account fields safe to hand to a client. No hash, no token material."""

    id: str
    full_name: str
    email: str
    role: Role
    status: AccountStatus
    email_verified: bool
    created_at: datetime | None
    last_login: datetime | None

    @classmethod
    def from_account(cls, account: Account) -> AccountView:
        return cls(
            id=account.id,
            full_name=account.full_name,
            email=account.email,
            role=account.role,
            status=account.status,
            email_verified=account.email_verified,
            created_at=account.created_at,
            last_login=account.last_login,
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


@dataclass(frozen=True)
class AuthResult:
    account: AccountView
    tokens: TokenPair


@dataclass(frozen=True)
class PasswordResetTicket:
    """Result of a reset request. reset_token is None when the email is unknown."""

    reset_token: str | None = None
