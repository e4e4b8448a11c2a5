"""
tests/conftest.py -- Shared test fixtures for AuthKeep unit and integration tests.

This module provides:
  - FakeClock: a settable clock injected into every store, the signer and the engine
  - RecordingNotifier: captures every code the engine hands out for delivery
  - db_engine / session_engine: an isolated in-memory database per test
  - register_verified(): helper that walks a user through register + verify
  - api_client: TestClient with a patched lifespan for HTTP integration tests

Design: the in-memory SQLite URL ("sqlite://") gets a StaticPool from
create_auth_engine(), so the TestClient's worker threads all see the same
single connection and schema.

bcrypt runs at 4 rounds everywhere in tests; the production default of 12
would make the lockout tests take seconds each.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates the JWT secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate JWT secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.db import create_auth_engine
from auth.engine import SessionEngine, build_session_engine
from auth.models import CodePurpose
from core.config import EngineConfig, get_settings, utc_now

TEST_ROUNDS = 4
PASSWORD = "Abc12345!"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to.

    Starts at the real current time so tokens signed against it still pass
    python-jose's own expiry check, which always uses the wall clock.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that records (kind, email, code) and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send_verification_code(self, email: str, code: str) -> bool:
        return self._record(CodePurpose.VERIFY_EMAIL.value, email, code)

    def send_login_code(self, email: str, code: str) -> bool:
        return self._record(CodePurpose.LOGIN.value, email, code)

    def send_password_reset_code(self, email: str, code: str) -> bool:
        return self._record(CodePurpose.PASSWORD_RESET.value, email, code)

    def _record(self, kind: str, email: str, code: str) -> bool:
        if self.fail:
            return False
        self.sent.append((kind, email, code))
        return True

    def last_code(self, kind: CodePurpose, email: str) -> str:
        for sent_kind, sent_email, code in reversed(self.sent):
            if sent_kind == kind.value and sent_email == email:
                return code
        raise AssertionError(f"no {kind.value} code was sent to {email}")


def scripted_codes(start: int = 100000):
    """Deterministic code generator: 100000, 100001, ... (never 999999 in practice)."""
    counter = itertools.count(start)
    return lambda: str(next(counter))


def make_config(**overrides) -> EngineConfig:
    config = EngineConfig(
        jwt_secret="test-access-secret-" + "a" * 32,
        jwt_refresh_secret="test-refresh-secret-" + "b" * 32,
        bcrypt_rounds=TEST_ROUNDS,
    )
    return replace(config, **overrides)


def register_verified(engine: SessionEngine, notifier: RecordingNotifier, email: str, password: str = PASSWORD):
    """Register a user and consume their verification code. Returns the User."""
    engine.register(email, password)
    engine.verify_email(email, notifier.last_code(CodePurpose.VERIFY_EMAIL, email))
    return engine.users.find_by_email(email)


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- a fresh database for every test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> EngineConfig:
    return make_config()


@pytest.fixture
def db_engine():
    engine = create_auth_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def session_engine(db_engine, config, notifier, clock) -> SessionEngine:
    return build_session_engine(db_engine, config, notifier, clock=clock, code_generator=scripted_codes())


# ---------------------------------------------------------------------------
# HTTP integration
# ---------------------------------------------------------------------------


def _patch_lifespan(db_engine, engine: SessionEngine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test database and SessionEngine into app.state so TestClient
    routes never touch the configured DATABASE_URL or a mail relay.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db_engine = db_engine
        app.state.engine = engine
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingNotifier, SessionEngine], None, None]:
    """Yield (client, notifier, engine) for API integration tests.

    The engine runs on the real clock (the HTTP layer has no clock seam) with
    the app's own settings, except bcrypt rounds. Rate limiting is disabled
    for the module; tests that exercise it turn it back on explicitly.
    """
    db_engine = create_auth_engine("sqlite://")
    notifier = RecordingNotifier()
    config = replace(get_settings().engine_config(), bcrypt_rounds=TEST_ROUNDS)
    engine = build_session_engine(db_engine, config, notifier)

    app.router.lifespan_context = _patch_lifespan(db_engine, engine)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client, notifier, engine

    limiter.enabled = True
    db_engine.dispose()
