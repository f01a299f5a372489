"""
tests/conftest.py -- Shared test fixtures for setu-auth.

This module provides:
  - FrozenClock: a controllable "now" injected into the service and its parts
  - settings / settings_factory: explicit Settings with test keys and a low bcrypt cost
  - store / service: AuthStore on plain in-memory SQLite plus an AuthService
  - account_factory: insert an account directly, bypassing signup
  - api_client: TestClient over the real app with a patched lifespan

Design: unit tests use plain sqlite:///:memory: (one thread, one connection).
TestClient runs sync route handlers in a thread pool, so the API fixture uses
a named shared-memory URI (file:name?mode=memory&cache=shared&uri=true) that
every worker thread sees as the same database.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates signing keys in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate signing keys in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Account, AccountStatus, Role
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import AuthStore
from core.config import Settings

TEST_PASSWORD = "Secure@123"

_TEST_SECRET = "test-access-secret-0123456789abcdef0123456789"
_TEST_REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba98"


class FrozenClock:
    """Callable clock that only moves when told to.

    Starts at the real current time: python-jose checks exp against the wall
    clock, so signed tokens must be minted near real time to verify.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": _TEST_SECRET,
        "refresh_secret_key": _TEST_REFRESH_SECRET,
        "database_url": "sqlite:///:memory:",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    """Build Settings with test keys plus keyword overrides."""
    return make_settings


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AuthStore, settings: Settings, clock: FrozenClock) -> AuthService:
    return AuthService(store, settings, clock=clock)


def make_account(
    store: AuthStore,
    email: str = "user@example.com",
    role: Role = Role.STUDENT,
    status: AccountStatus = AccountStatus.ACTIVE,
    password: str = TEST_PASSWORD,
    now: datetime | None = None,
) -> Account:
    """Insert an account straight into the store and return it as read back."""
    account_id = store.create_account(
        Account(
            email=email,
            full_name="Test User",
            password_hash=hash_password(password, rounds=4),
            role=role,
            status=status,
        ),
        now=now,
    )
    return store.get_account(account_id)


@pytest.fixture
def account_factory(store: AuthStore, clock: FrozenClock):
    """Insert accounts into the unit-test store, stamped with the test clock."""

    def factory(**kwargs) -> Account:
        kwargs.setdefault("now", clock())
        return make_account(store, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, service: AuthService, outbox: list[tuple[str, str]]):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state and installs a reset
    delivery hook that records (email, token) instead of sending mail.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.auth_service = service
        app.state.reset_delivery = lambda email, token: outbox.append((email, token))
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService, list], None, None]:
    """Yield (client, service, outbox) for API integration tests.

    The DB name is derived from the test module so modules never share state.
    outbox collects the reset tokens handed to app.state.reset_delivery.
    """
    db_name = request.module.__name__.replace(".", "_")
    url = f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true"
    store = AuthStore(url)
    service = AuthService(store, make_settings(database_url=url))
    outbox: list[tuple[str, str]] = []

    app.router.lifespan_context = _patch_lifespan(store, service, outbox)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, outbox

    store.close()


@pytest.fixture
def fresh_limits() -> Generator[None, None, None]:
    """Clear rate-limit counters before and after a test."""
    limiter.reset()
    yield
    limiter.reset()
