"""
tests/test_concurrency.py -- Races on the atomic store primitives.

Each test releases N threads at once through a threading.Barrier against a
file-backed SQLite database (separate pooled connections, WAL journal), so
the check-and-set UPDATEs in auth/store.py really compete.

Coverage:
  - N concurrent refreshes of one token: exactly one rotation succeeds, the
    rest answer TokenAlreadyUsed
  - N concurrent redemptions of one reset record: exactly one wins
  - N concurrent wrong-password logins: login_attempts == N, nothing lost
  - N concurrent guard failures at threshold N: count is N and the lock is set
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import InvalidCredentials, TokenAlreadyUsed
from auth.guard import AccountGuard
from auth.models import Role, TokenKind
from auth.opaque import OpaqueTokenStore
from auth.service import AuthService
from auth.store import AuthStore

PASSWORD = "Secure@123"
WORKERS = 8


def _race(worker: Callable[[], object], n: int = WORKERS) -> list[object]:
    """Run worker in n threads released together; return each result or exception."""
    barrier = threading.Barrier(n, timeout=10)

    def run() -> object:
        barrier.wait()
        try:
            return worker()
        except Exception as exc:  # collected for the assertions
            return exc

    with ThreadPoolExecutor(max_workers=n) as pool:
        futures = [pool.submit(run) for _ in range(n)]
        return [f.result(timeout=30) for f in futures]


@pytest.fixture
def file_store(tmp_path) -> Generator[AuthStore, None, None]:
    s = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def file_service(file_store: AuthStore, settings_factory, clock) -> AuthService:
    # Threshold above WORKERS so no racer is turned away by an early lock.
    return AuthService(file_store, settings_factory(max_login_attempts=100), clock=clock)


def _signup(service: AuthService):
    return service.signup("Race Runner", "race@example.com", PASSWORD, PASSWORD, Role.STUDENT)


class TestRefreshRace:
    def test_exactly_one_rotation(self, file_service: AuthService) -> None:
        token = _signup(file_service).tokens.refresh_token

        results = _race(lambda: file_service.refresh(token))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == WORKERS - 1
        assert all(isinstance(r, TokenAlreadyUsed) for r in losers), losers
        # The single new token still rotates normally.
        file_service.refresh(winners[0].refresh_token)


class TestRedeemRace:
    def test_exactly_one_redemption(self, file_service: AuthService, file_store: AuthStore, settings, clock) -> None:
        account_id = _signup(file_service).account.id
        tokens = OpaqueTokenStore(file_store, settings, clock=clock)
        issued = tokens.issue(account_id, TokenKind.RESET_PASSWORD, "1h")

        results = _race(lambda: tokens.redeem(issued.token, TokenKind.RESET_PASSWORD))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].id == issued.record_id
        assert len(losers) == WORKERS - 1
        assert all(isinstance(r, TokenAlreadyUsed) for r in losers), losers


class TestLoginFailureRace:
    def test_no_lost_increments(self, file_service: AuthService, file_store: AuthStore) -> None:
        account_id = _signup(file_service).account.id

        results = _race(lambda: file_service.login("race@example.com", "Wrong@123"))

        assert all(isinstance(r, InvalidCredentials) for r in results), results
        assert file_store.get_account(account_id).login_attempts == WORKERS

    def test_guard_locks_at_threshold(self, file_store: AuthStore, settings_factory, clock) -> None:
        guard = AccountGuard(file_store, settings_factory(max_login_attempts=WORKERS), clock=clock)
        file_service = AuthService(file_store, settings_factory(), clock=clock)
        stale = file_store.get_account(_signup(file_service).account.id)

        _race(lambda: guard.record_failure(stale))

        final = file_store.get_account(stale.id)
        assert final.login_attempts == WORKERS
        assert final.locked_until is not None
        assert guard.is_locked(final)
