"""
tests/conftest.py -- Shared test fixtures for bankauth unit and integration tests.

This module provides:
  - memory_url(): a unique named shared-memory SQLite URL per call
  - store / recorder / limiter / service: isolated components per test
  - create_user: factory that inserts a user with a known password
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool and the audit
recorder writes from its own worker thread. Plain :memory: DBs are
per-connection and would present a blank schema to every other thread.
The credential store and the audit recorder get separate databases so the
audit worker never contends with a request thread for the same
shared-cache write lock.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() then auto-generates SECRET_KEY and accepts a cost of 4,
which keeps each bcrypt call in the millisecond range.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import (settings are read at import time).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import RateLimiter, TrafficClass
from api.main import app
from auth.audit import AuditRecorder
from auth.models import UserCredential
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import CredentialStore

ADMIN_ROLE_ID = 2


def memory_url(prefix: str) -> str:
    """Return a named shared-memory SQLite URL unique to this call."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore(db_url=memory_url("test_auth"))
    yield s
    s.close()


@pytest.fixture
def recorder() -> Generator[AuditRecorder, None, None]:
    r = AuditRecorder(db_url=memory_url("test_audit"))
    yield r
    r.close()


@pytest.fixture
def recorder_factory() -> Generator[Callable[..., AuditRecorder], None, None]:
    """Factory for recorders with non-default backlog settings. All are closed on teardown."""
    made: list[AuditRecorder] = []

    def _make(**kwargs) -> AuditRecorder:
        r = AuditRecorder(db_url=memory_url("test_audit"), **kwargs)
        made.append(r)
        return r

    yield _make
    for r in made:
        r.close()


@pytest.fixture
def limiter() -> RateLimiter:
    """Limiter with the production thresholds: 100 general / 20 auth per 15 minutes."""
    return RateLimiter({TrafficClass.GENERAL: (100, 900), TrafficClass.AUTH: (20, 900)})


@pytest.fixture
def service(store: CredentialStore, recorder: AuditRecorder) -> AuthService:
    return AuthService(store, recorder)


@pytest.fixture
def create_user(store: CredentialStore) -> Callable[..., UserCredential]:
    """Factory: insert a user with a real bcrypt hash and return the stored record."""

    def _create(
        username: str = "alice",
        password: str = "correct horse",
        email: str | None = None,
        role_id: int = 1,
    ) -> UserCredential:
        user_id = store.insert_user(
            UserCredential(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=hash_password(password),
                role_id=role_id,
            )
        )
        return store.find_by_id(user_id)

    return _create


@pytest.fixture
def admin(create_user: Callable[..., UserCredential]) -> UserCredential:
    """A stored user holding the seeded admin role."""
    return create_user("root", "admin password", role_id=ADMIN_ROLE_ID)


# ---------------------------------------------------------------------------
# Integration client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, recorder: AuditRecorder, limiter: RateLimiter):
    """Return a lifespan that wires test components into app.state.

    Teardown is left to the component fixtures so tests can still inspect the
    store and the audit log after the client has shut down.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_store = store
        app.state.audit_recorder = recorder
        app.state.rate_limiter = limiter
        app.state.auth_service = AuthService(store, recorder)
        yield

    return test_lifespan


@pytest.fixture
def client(
    store: CredentialStore, recorder: AuditRecorder, limiter: RateLimiter
) -> Generator[TestClient, None, None]:
    """TestClient over the real FastAPI app with isolated stores and a fresh limiter."""
    app.router.lifespan_context = _patch_lifespan(store, recorder, limiter)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
