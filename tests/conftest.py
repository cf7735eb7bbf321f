"""
tests/conftest.py -- Shared test fixtures for Authflow unit and integration tests.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and captured emails
  - settings, engine, user_store, ledger, sessions: isolated in-memory stores
  - service, gate: the state machine and login gate wired to those stores
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Each test gets its own database name, so no state leaks between tests.

The DEBUG env var must be set before any api/ import so get_settings()
(read by api/limiter.py at import) auto-generates SECRET_KEY in dev mode
rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.db import create_auth_engine
from auth.ledger import AttemptLedger
from auth.models import User
from auth.notifier import NotificationKind
from auth.policy import LoginGate
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import generate_one_time_token, hash_password
from core.config import Settings

TEST_PASSWORD = "longenough1"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, str, str]] = []
        self.fail = False

    def send(self, kind: NotificationKind, recipient: str, token: str) -> bool:
        if self.fail:
            return False
        self.sent.append((kind, recipient, token))
        return True

    def last_token(self, recipient: str, kind: NotificationKind = NotificationKind.verification) -> str:
        for sent_kind, sent_to, token in reversed(self.sent):
            if sent_kind is kind and sent_to == recipient:
                return token
        raise AssertionError(f"no {kind.value} message sent to {recipient}")


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    # bcrypt_rounds=4 keeps hashing fast; the algorithm is the same.
    return Settings(debug=True, secret_key="t" * 48, bcrypt_rounds=4, database_url="sqlite://")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine():
    url = f"sqlite:///file:authflow_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    eng = create_auth_engine(url)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine, clock) -> UserStore:
    return UserStore(engine, clock=clock)


@pytest.fixture
def ledger(engine, clock, settings) -> AttemptLedger:
    return AttemptLedger(engine, retention_seconds=settings.login_attempt_window_seconds, clock=clock)


@pytest.fixture
def sessions(engine, clock, settings) -> SessionRegistry:
    return SessionRegistry(engine, ttl_seconds=settings.active_session_ttl_seconds, clock=clock)


@pytest.fixture
def service(settings, user_store, sessions, notifier, clock) -> AuthService:
    return AuthService(settings, user_store, sessions, notifier, clock=clock)


@pytest.fixture
def gate(settings, user_store, ledger, sessions, clock) -> LoginGate:
    return LoginGate(settings, user_store, ledger, sessions, clock=clock)


def make_verified_user(store: UserStore, email: str, password: str = TEST_PASSWORD, clock=None) -> User:
    """Insert a verified user directly, bypassing registration (and its rate limit)."""
    now = clock() if clock else datetime.now(timezone.utc)
    user = store.create(email, hash_password("placeholder", rounds=4), generate_one_time_token(), now + timedelta(hours=1))
    user.set_password(password, rounds=4)
    user.is_verified = True
    user.clear_registration_token()
    store.save(user)
    return store.get_by_email(email)


def make_pending_user(store: UserStore, email: str, clock=None) -> User:
    now = clock() if clock else datetime.now(timezone.utc)
    return store.create(email, hash_password("placeholder", rounds=4), generate_one_time_token(), now + timedelta(hours=1))


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings, user_store, ledger, sessions, notifier, clock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores, the fake clock and the recording notifier into
    app.state so TestClient routes never touch the production database or
    an SMTP server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.ledger = ledger
        app.state.sessions = sessions
        app.state.notifier = notifier
        app.state.auth_service = AuthService(settings, user_store, sessions, notifier, clock=clock)
        app.state.login_gate = LoginGate(settings, user_store, ledger, sessions, clock=clock)
        yield

    return test_lifespan


@pytest.fixture
def client(settings, user_store, ledger, sessions, notifier, clock) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and fresh rate-limit counters."""
    app.router.lifespan_context = _patch_lifespan(settings, user_store, ledger, sessions, notifier, clock)
    limiter.reset()
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client
    limiter.reset()
