from __future__ import annotations

import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from argon2 import PasswordHasher  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from session_service.api import routes  # noqa: E402
from session_service.api.errors import register_exception_handlers  # noqa: E402
from session_service.config import get_settings  # noqa: E402
from session_service.domain.service import SessionManager  # noqa: E402
from session_service.memory_repository import (  # noqa: E402
    InMemoryAccountRepository,
    InMemorySessionRepository,
)
from session_service.security.passwords import CredentialVerifier  # noqa: E402
from session_service.security.rate_limiter import FixedWindowRateLimiter  # noqa: E402
from session_service.security.tokens import TokenCodec  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock shared by the manager and its codec."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def timestamp(self) -> float:
        return self.current.timestamp()

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def verifier() -> CredentialVerifier:
    # cheap argon2 parameters keep the suite fast
    return CredentialVerifier(PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1))


@pytest.fixture
def accounts() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def sessions() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(get_settings(), clock=clock.timestamp)


@pytest.fixture
def manager(accounts, sessions, codec, verifier, clock) -> SessionManager:
    return SessionManager(
        accounts,
        sessions,
        codec=codec,
        verifier=verifier,
        settings=get_settings(),
        clock=clock,
    )


@pytest.fixture
def api_client(accounts, sessions, verifier):
    """Provide a FastAPI test client with isolated state and a real clock."""
    manager = SessionManager(accounts, sessions, verifier=verifier, settings=get_settings())

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(routes.router)
    app.state.settings = get_settings()
    app.state.session_manager = manager
    app.state.auth_rate_limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=900)
    app.state.api_rate_limiter = FixedWindowRateLimiter(max_requests=100, window_seconds=60)

    with TestClient(app) as client:
        yield client, manager
