"""
tests/test_guard.py -- Unit tests for auth/guard.py (failed-login lockout).

Coverage:
  - Failures below the threshold only increment the counter
  - The threshold-th failure sets locked_until = now + lockout window
  - check_locked raises AccountLocked with the remaining seconds while locked
  - The lock lapses once the window has passed
  - A successful login resets the counter and clears the lock
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import AccountLocked
from auth.guard import AccountGuard


@pytest.fixture
def guard(store, settings, clock) -> AccountGuard:
    return AccountGuard(store, settings, clock=clock)


class TestLockout:
    def test_failures_below_threshold(self, guard: AccountGuard, account_factory) -> None:
        account = account_factory()
        for _ in range(4):
            account = guard.record_failure(account)
        assert account.login_attempts == 4
        assert account.locked_until is None
        guard.check_locked(account)

    def test_threshold_locks(self, guard: AccountGuard, account_factory, clock) -> None:
        account = account_factory()
        for _ in range(5):
            account = guard.record_failure(account)
        assert account.login_attempts == 5
        assert account.locked_until == clock() + timedelta(minutes=15)
        assert guard.is_locked(account)

        with pytest.raises(AccountLocked) as exc_info:
            guard.check_locked(account)
        assert exc_info.value.remaining_seconds == 900
        assert "15 minutes" in exc_info.value.message

    def test_remaining_shrinks(self, guard: AccountGuard, account_factory, clock) -> None:
        account = account_factory()
        for _ in range(5):
            account = guard.record_failure(account)
        clock.advance(minutes=14, seconds=30)
        with pytest.raises(AccountLocked) as exc_info:
            guard.check_locked(account)
        assert exc_info.value.remaining_seconds == 30
        assert "1 minute." in exc_info.value.message

    def test_lock_lapses(self, guard: AccountGuard, account_factory, clock) -> None:
        account = account_factory()
        for _ in range(5):
            account = guard.record_failure(account)
        clock.advance(minutes=15, seconds=1)
        assert not guard.is_locked(account)
        guard.check_locked(account)

    def test_success_resets(self, guard: AccountGuard, account_factory, clock) -> None:
        account = account_factory()
        for _ in range(5):
            account = guard.record_failure(account)
        account = guard.record_success(account)
        assert account.login_attempts == 0
        assert account.locked_until is None
        assert account.last_login == clock()
