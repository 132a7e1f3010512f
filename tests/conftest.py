"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing app
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-jwt-unit-tests-0123456789")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from session_auth.config import Settings
from session_auth.main import build_session_service, create_app
from session_auth.services.auth_session_service import AuthSessionService
from session_auth.services.identity_service import IdentityService
from session_auth.services.password_service import PasswordService
from session_auth.services.refresh_token_service import RefreshTokenService
from session_auth.services.refresh_token_store import InMemoryRefreshTokenStore
from session_auth.services.token_service import TokenService
from session_auth.services.user_store import InMemoryUserStore

JWT_SECRET = "test-secret-key-for-jwt-unit-tests-0123456789"
JWT_ISSUER = "session-auth-tests"
JWT_AUDIENCE = "session-auth-test-users"


class FakeClock:
    """Manually advanced UTC clock, injected wherever a service reads the time."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MockConnection:
    """Mock asyncpg connection with common query methods."""

    def __init__(self):
        self.execute = AsyncMock()
        self.fetchrow = AsyncMock()
        self.fetchval = AsyncMock()
        self.fetch = AsyncMock()
        self.transaction = MagicMock(return_value=_MockTransaction())


class _MockTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class MockPool:
    """Mock asyncpg pool with acquire() context manager."""

    def __init__(self, conn: MockConnection):
        self._conn = conn

    def acquire(self):
        return _MockPoolAcquire(self._conn)


class _MockPoolAcquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory app with fast hashing and both providers configured."""
    return Settings(
        jwt_secret=JWT_SECRET,
        jwt_issuer=JWT_ISSUER,
        jwt_audience=JWT_AUDIENCE,
        bcrypt_rounds=4,
        store_backend="memory",
        store_timeout_seconds=1.0,
        oauth_redirect_uri="https://app.example.com/oauth/callback",
        oauth_google_client_id="google-client-id",
        oauth_google_client_secret="google-client-secret",
        oauth_github_client_id="github-client-id",
        oauth_github_client_secret="github-client-secret",
    )


@pytest.fixture
def mock_pool():
    """Return (pool, connection) pair for database mocking."""
    conn = MockConnection()
    pool = MockPool(conn)
    return pool, conn


@pytest.fixture
def passwords() -> PasswordService:
    return PasswordService(rounds=4)


@pytest.fixture
def tokens(clock) -> TokenService:
    return TokenService(
        JWT_SECRET,
        issuer=JWT_ISSUER,
        audience=JWT_AUDIENCE,
        ttl=timedelta(minutes=15),
        clock=clock,
    )


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def refresh_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def refresh_tokens(refresh_store, clock) -> RefreshTokenService:
    return RefreshTokenService(
        refresh_store,
        ttl=timedelta(days=7),
        reuse_policy="revoke_chain",
        timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def identities(user_store, passwords) -> IdentityService:
    return IdentityService(user_store, passwords, default_age=18, timeout=1.0)


@pytest.fixture
def sessions(user_store, passwords, tokens, refresh_tokens, identities):
    """AuthSessionService over in-memory stores and the fake clock."""
    return AuthSessionService(
        users=user_store,
        passwords=passwords,
        tokens=tokens,
        refresh_tokens=refresh_tokens,
        identities=identities,
        min_age=18,
        max_age=100,
        timeout=1.0,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app) -> Generator:
    """TestClient running the full lifespan against the in-memory backend."""
    from fastapi.testclient import TestClient

    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def wired_sessions(settings, user_store, refresh_store):
    """Session service built the same way the application builds it."""
    return build_session_service(settings, user_store, refresh_store)
