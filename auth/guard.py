"""
auth/guard.py -- Failed-login counting and lockout windows.

Per-account state machine:
  unlocked  login_attempts below MAX_LOGIN_ATTEMPTS, or locked_until passed
  locked    locked_until in the future

There is no unlock action. A lock simply stops applying once locked_until is
in the past. The counter is only reset by a successful login, never by time:
after a lock expires, the very next failure re-locks the account.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import AccountLocked, Internal
from auth.models import Account
from auth.store import AuthStore
from core.config import Settings, get_settings
from core.durations import expires_at

logger = logging.getLogger("setuauth.guard")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountGuard:
    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = settings or get_settings()
        self._store = store
        self._threshold = settings.max_login_attempts
        self._lockout = settings.lockout_duration
        self._clock = clock

    def check_locked(self, account: Account) -> None:
        """Raise AccountLocked with the remaining wait if the lock is still in force."""
        if account.locked_until is None:
            return
        remaining = (account.locked_until - self._clock()).total_seconds()
        if remaining > 0:
            raise AccountLocked(remaining)

    def record_failure(self, account: Account) -> Account:
        """Count one failed attempt; start a lockout when the threshold is reached."""
        now = self._clock()
        updated = self._store.record_login_failure(
            account.id,
            threshold=self._threshold,
            lock_until=expires_at(self._lockout, now),
            now=now,
        )
        if updated is None:
            raise Internal(f"Account {account.id} vanished while recording a login failure")
        if self.is_locked(updated):
            logger.warning(
                "Account %s locked after %d failed attempts until %s",
                updated.id,
                updated.login_attempts,
                updated.locked_until.isoformat(),
            )
        return updated

    def record_success(self, account: Account) -> Account:
        """Reset the counter, clear the lock, stamp last_login."""
        updated = self._store.record_login_success(account.id, self._clock())
        if updated is None:
            raise Internal(f"Account {account.id} vanished while recording a login")
        return updated

    def is_locked(self, account: Account) -> bool:
        return account.locked_until is not None and account.locked_until > self._clock()
