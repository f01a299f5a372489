"""
auth/service.py -- The authentication orchestrator.

AuthService composes the password hasher, token codec, opaque token store and
account guard into the signup / login / refresh / logout / password-reset
flows. It owns every invariant; the HTTP layer only translates requests and
AuthError subclasses.

Security notes:
  [C1] Login runs bcrypt on every branch, against a dummy hash when the email
       is unknown, and answers unknown-email, soft-deleted and wrong-password
       with the same InvalidCredentials.

  Refresh rotation: every redemption consumes the presented refresh token and
       issues a brand-new pair. Presenting a consumed token is treated as a
       replay (TokenAlreadyUsed), audited as TOKEN_REUSE_DETECTED, and never
       answered with fresh tokens.

  Concurrent sessions are allowed. Signup, login and refresh never revoke the
       account's other refresh tokens; logout and password reset revoke all.

  Password reset requests for unknown emails return the same result shape and
       persist nothing.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.audit import AuditSink, StoreAuditSink
from auth.errors import (
    AccountLocked,
    AccountNotActive,
    EmailAlreadyRegistered,
    Internal,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenMalformed,
    ValidationFailed,
)
from auth.guard import AccountGuard
from auth.models import (
    DEFAULT_STATUS_BY_ROLE,
    SELF_REGISTRABLE,
    Account,
    AccountStatus,
    AccountView,
    AuditEvent,
    AuditOutcome,
    AuthResult,
    PasswordResetTicket,
    RequestContext,
    Role,
    TokenKind,
    TokenPair,
)
from auth.opaque import OpaqueTokenStore
from auth.passwords import hash_password, validate_password_strength, verify_dummy, verify_password
from auth.store import AuthStore, new_id
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

logger = logging.getLogger("setuauth.service")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_MAX_LEN = 255
FULL_NAME_MIN_LEN = 2
FULL_NAME_MAX_LEN = 100

# Audit action names
SIGNUP = "SIGNUP"
LOGIN = "LOGIN"
LOGIN_FAILED = "LOGIN_FAILED"
ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
TOKEN_REFRESH = "TOKEN_REFRESH"
TOKEN_REUSE_DETECTED = "TOKEN_REUSE_DETECTED"
LOGOUT = "LOGOUT"
PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email)) and len(email) <= EMAIL_MAX_LEN


def _store_failures_are_internal(flow):
    """Turn a storage exception escaping a flow into an opaque Internal error.

    The original exception is logged with the flow name and chained, so the
    server log keeps the full context while the caller sees nothing of it.
    """

    @functools.wraps(flow)
    def wrapper(self, *args, **kwargs):
        try:
            return flow(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", flow.__name__)
            raise Internal(f"Store failure during {flow.__name__}") from exc

    return wrapper


class AuthService:
    """Signup, login, token refresh, logout and password reset.

    Usage:
        service = AuthService(AuthStore(settings.database_url), settings)
        result = service.login("a@x.com", "Secure@123", ip="203.0.113.9")
        pair = service.refresh(result.tokens.refresh_token)

    clock is injected into every component so the whole service sees one
    notion of "now"; tests pass a controllable clock to walk through lockout
    windows and token expiry.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        *,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.codec = TokenCodec(self.settings, clock=clock)
        self.tokens = OpaqueTokenStore(store, self.settings, clock=clock)
        self.guard = AccountGuard(store, self.settings, clock=clock)
        self.audit = audit if audit is not None else StoreAuditSink(store)
        self._clock = clock

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def signup(
        self,
        full_name: str,
        email: str,
        password: str,
        confirm_password: str,
        role: Role | str,
        ip: str | None = None,
        agent: str | None = None,
    ) -> AuthResult:
        """Register a new account and sign it in.

        All client-correctable problems are collected and reported together.
        No audit event is written for a rejected signup: there is no account
        to attribute it to yet.
        """
        try:
            role = Role(role)
        except ValueError:
            allowed = ", ".join(r.value for r in Role if SELF_REGISTRABLE[r])
            raise ValidationFailed([f"Invalid role. Allowed: {allowed}"]) from None
        if not SELF_REGISTRABLE[role]:
            raise ValidationFailed([f"The {role.value} role cannot be self-assigned."])

        full_name = (full_name or "").strip()
        email = normalize_email(email)
        violations: list[str] = []
        if not FULL_NAME_MIN_LEN <= len(full_name) <= FULL_NAME_MAX_LEN:
            violations.append(f"Full name must be between {FULL_NAME_MIN_LEN} and {FULL_NAME_MAX_LEN} characters")
        if not is_valid_email(email):
            violations.append("Valid email address is required")
        if password != confirm_password:
            violations.append("Passwords do not match")
        violations.extend(validate_password_strength(password).errors)
        if violations:
            raise ValidationFailed(violations)

        if self.store.get_account_by_email(email) is not None:
            raise EmailAlreadyRegistered()

        account = Account(
            email=email,
            full_name=full_name,
            password_hash=hash_password(password, self.settings.bcrypt_rounds),
            role=role,
            status=DEFAULT_STATUS_BY_ROLE[role],
        )
        try:
            account_id = self.store.create_account(account, now=self._clock())
        except IntegrityError as exc:
            # A concurrent signup for the same email committed first.
            raise EmailAlreadyRegistered() from exc

        created = self._load(account_id)
        context = RequestContext(ip, agent)
        tokens = self._issue_pair(created, context)
        logger.info("Account %s created (role=%s, status=%s)", created.id, created.role.value, created.status.value)
        self._audit(SIGNUP, AuditOutcome.SUCCESS, created.id, context)
        return AuthResult(account=AccountView.from_account(created), tokens=tokens)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def login(self, email: str, password: str, ip: str | None = None, agent: str | None = None) -> AuthResult:
        """Authenticate with email and password.

        Order matters: lock state is checked before the password, so a locked
        account answers AccountLocked whether or not the password is right.
        The failure that reaches the threshold reports the new lock directly.
        """
        context = RequestContext(ip, agent)
        account = self.store.get_account_by_email(normalize_email(email))
        if account is None or account.deleted_at is not None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_dummy(password, self.settings.bcrypt_rounds)
            self._audit(LOGIN_FAILED, AuditOutcome.FAILURE, None, context, "unknown account")
            raise InvalidCredentials()

        try:
            self.guard.check_locked(account)
        except AccountLocked:
            self._audit(LOGIN_FAILED, AuditOutcome.FAILURE, account.id, context, "account locked")
            raise

        if not verify_password(password, account.password_hash):
            updated = self.guard.record_failure(account)
            self._audit(LOGIN_FAILED, AuditOutcome.FAILURE, account.id, context, "bad password")
            if self.guard.is_locked(updated):
                self._audit(ACCOUNT_LOCKED, AuditOutcome.FAILURE, account.id, context)
                self.guard.check_locked(updated)
            raise InvalidCredentials()

        if account.status is not AccountStatus.ACTIVE:
            self._audit(LOGIN_FAILED, AuditOutcome.FAILURE, account.id, context, f"status {account.status.value}")
            raise AccountNotActive(account.status)

        account = self.guard.record_success(account)
        tokens = self._issue_pair(account, context)
        self._audit(LOGIN, AuditOutcome.SUCCESS, account.id, context)
        return AuthResult(account=AccountView.from_account(account), tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def refresh(self, refresh_token: str, ip: str | None = None, agent: str | None = None) -> TokenPair:
        """Exchange a refresh token for a new access + refresh pair (rotation).

        The presented token is consumed by the redemption itself, so it can
        never be redeemed again, whatever happens afterwards.
        """
        context = RequestContext(ip, agent)
        claims = self.codec.verify_refresh(refresh_token)

        try:
            record = self.tokens.redeem(refresh_token, TokenKind.REFRESH)
        except TokenAlreadyUsed:
            logger.warning(
                "Refresh token reuse detected for account %s (record %s)",
                claims.account_id,
                claims.token_record_id,
            )
            self._audit(TOKEN_REUSE_DETECTED, AuditOutcome.FAILURE, claims.account_id, context)
            raise

        if record.id != claims.token_record_id or record.account_id != claims.account_id:
            logger.error("Refresh token claims do not match record %s", record.id)
            raise TokenMalformed("Invalid refresh token.")

        account = self.store.get_account(record.account_id)
        if account is None or account.deleted_at is not None:
            raise NotFound("Account not found.")
        if account.status is not AccountStatus.ACTIVE:
            raise AccountNotActive(account.status)

        tokens = self._issue_pair(account, context)
        self._audit(TOKEN_REFRESH, AuditOutcome.SUCCESS, account.id, context)
        return tokens

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def logout(self, account_id: str, ip: str | None = None, agent: str | None = None) -> None:
        """Revoke every outstanding refresh token of the account. Idempotent."""
        self.tokens.revoke_all_for_account(account_id, TokenKind.REFRESH)
        self._audit(LOGOUT, AuditOutcome.SUCCESS, account_id, RequestContext(ip, agent))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def request_password_reset(
        self, email: str, ip: str | None = None, agent: str | None = None
    ) -> PasswordResetTicket:
        """Issue a one-hour reset token, revoking any earlier ones.

        The caller hands ticket.reset_token to its delivery channel. For an
        unknown email the ticket is empty and nothing is written anywhere.
        """
        account = self.store.get_account_by_email(normalize_email(email))
        if account is None:
            return PasswordResetTicket()

        context = RequestContext(ip, agent)
        self.tokens.revoke_all_for_account(account.id, TokenKind.RESET_PASSWORD)
        issued = self.tokens.issue(
            account.id,
            TokenKind.RESET_PASSWORD,
            self.settings.password_reset_expires_in,
            context,
        )
        self._audit(PASSWORD_RESET_REQUESTED, AuditOutcome.SUCCESS, account.id, context)
        return PasswordResetTicket(reset_token=issued.token)

    @_store_failures_are_internal
    def confirm_password_reset(
        self,
        token: str,
        new_password: str,
        confirm_password: str,
        ip: str | None = None,
        agent: str | None = None,
    ) -> None:
        """Set a new password using a reset token; signs the account out everywhere.

        Input is validated and the new hash computed before the token is
        touched, so a typo does not burn the reset link.
        """
        violations: list[str] = []
        if new_password != confirm_password:
            violations.append("Passwords do not match")
        violations.extend(validate_password_strength(new_password).errors)
        if violations:
            raise ValidationFailed(violations)
        new_hash = hash_password(new_password, self.settings.bcrypt_rounds)

        try:
            record = self.tokens.redeem(token or "", TokenKind.RESET_PASSWORD)
        except (NotFound, TokenExpired, TokenAlreadyUsed) as exc:
            raise InvalidOrExpiredToken() from exc

        account = self.store.get_account(record.account_id)
        if account is None or account.deleted_at is not None:
            raise InvalidOrExpiredToken()

        self.store.apply_password_reset(account.id, new_hash, record.id, self._clock())
        logger.info("Password reset completed for account %s; refresh tokens revoked", account.id)
        self._audit(PASSWORD_RESET_COMPLETED, AuditOutcome.SUCCESS, account.id, RequestContext(ip, agent))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @_store_failures_are_internal
    def get_account(self, account_id: str) -> AccountView:
        account = self.store.get_account(account_id)
        if account is None or account.deleted_at is not None:
            raise NotFound("Account not found.")
        return AccountView.from_account(account)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, account_id: str) -> Account:
        account = self.store.get_account(account_id)
        if account is None:
            raise Internal(f"Account {account_id} not found after write")
        return account

    def _issue_pair(self, account: Account, context: RequestContext) -> TokenPair:
        """Mint an access token and a store-backed refresh token.

        The record id is allocated first so the refresh JWT can reference the
        row that is then stored under the JWT's own hash.
        """
        record_id = new_id()
        refresh = self.codec.sign_refresh(account.id, record_id)
        self.tokens.issue(
            account.id,
            TokenKind.REFRESH,
            self.codec.refresh_window,
            context,
            token=refresh.token,
            record_id=record_id,
        )
        access = self.codec.sign_access(account.id, account.email, account.role)
        return TokenPair(access_token=access.token, refresh_token=refresh.token, expires_in=access.expires_in)

    def _audit(
        self,
        action: str,
        outcome: AuditOutcome,
        account_id: str | None,
        context: RequestContext,
        details: str | None = None,
    ) -> None:
        """Append an audit event. Sink failures are logged and swallowed."""
        event = AuditEvent(
            action=action,
            outcome=outcome,
            account_id=account_id,
            details=details,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            created_at=self._clock(),
        )
        try:
            self.audit.append(event)
        except Exception:
            logger.exception("Audit sink failed for %s (account=%s)", action, account_id)
