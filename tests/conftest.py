"""
tests/conftest.py -- Shared test fixtures for the identity service.

This module provides:
  - FakeClock: a controllable clock injected into every component
  - store / settings / sender / clock / service: a fully wired AuthService
    over an isolated in-memory SQLite database and a recording MemorySender
  - make_account: factory that registers (and by default verifies) an account
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Every fixture instance gets its own name so tests never see each other's rows.

DEBUG and ALLOWED_HOSTS must be set before any api/ import: the app module
reads get_settings() at import time for TrustedHostMiddleware.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient

from auth.limiter import RateLimiter
from auth.models import Role
from auth.service import AuthService, build_auth_service
from auth.store import IdentityStore
from core.config import Settings
from notify.sender import MemorySender

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
PASSWORD = "Passw0rd1"

_TOKEN_RE = re.compile(r"token=([0-9a-f]{64})")


class FakeClock:
    """Callable clock. advance() moves time forward; nothing moves it back."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def memory_db_url(prefix: str = "identity") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "debug": True,
        "check_email_deliverability": False,
        "notification_retry_delay_seconds": 0,
        "registration_limit_per_ip_per_hour": 50,
        "app_name": "Identity Test",
        "app_url": "http://app.test",
    }
    values.update(overrides)
    return Settings(**values)


def _last_token(sender: MemorySender, email: str) -> str:
    """Raw token from the newest message to email that carries a link."""
    for message in reversed(sender.to(email)):
        match = _TOKEN_RE.search(message.text_body)
        if match:
            return match.group(1)
    raise AssertionError(f"no token-bearing message sent to {email}")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore(memory_db_url())
    yield s
    s.close()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sender() -> MemorySender:
    return MemorySender()


@pytest.fixture
def service(settings, sender, clock, store) -> AuthService:
    return build_auth_service(settings, sender=sender, clock=clock, store=store, limiter=RateLimiter())


@pytest.fixture
def mailed_token(sender: MemorySender):
    """Function returning the raw token from the newest link mailed to an address."""
    return lambda email: _last_token(sender, email)


@pytest.fixture
def make_account(service: AuthService, sender: MemorySender):
    """Register an account through the service. verified=True also clicks the link."""

    def _make(
        email: str,
        password: str = PASSWORD,
        role: Role = Role.TRIAL,
        verified: bool = True,
        given_name: str = "Ana",
        family_name: str = "Lopez",
        company: str | None = None,
    ) -> str:
        result = service.register(
            email,
            password,
            given_name,
            family_name,
            company=company,
            role=role,
            allow_admin=role == Role.ADMINISTRATOR,
        )
        assert result.success, f"{result.code}: {result.message}"
        if verified:
            verified_result = service.verify_email(_last_token(sender, result.account.email))
            assert verified_result.success, verified_result.message
        return result.account.email

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service into app.state so TestClient routes hit an isolated
    database. The maintenance task is a long-sleeping coroutine (a real
    asyncio.Task is required so .cancel() works on shutdown).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = service
        app.state.maintenance_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.maintenance_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(service, sender, clock) -> Generator[tuple[TestClient, AuthService, MemorySender], None, None]:
    """Yield (client, service, sender) for API integration tests.

    The slowapi counters are process-wide, so they are cleared for every test.
    """
    from api.limiter import limiter
    from api.main import app

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(service)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, sender
