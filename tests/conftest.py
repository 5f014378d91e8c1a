"""
tests/conftest.py -- Shared fixtures for identity core and API tests.

This module provides:
  - clock / delivery / hasher: FakeClock, RecordingDelivery, fast CredentialHasher
  - store / service: a fresh in-memory AccountStore and IdentityService per test
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG must be set before any api/ or core/ import so get_settings() generates
signing secrets in dev mode instead of raising ValueError.

bcrypt runs with rounds=4 throughout to keep the suite fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.hashing import CredentialHasher
from auth.models import Account, AccountStatus, Role, SignupMethod
from auth.otp import OTPGenerator
from auth.service import IdentityService
from auth.store import AccountStore
from tests.helpers import FakeClock, RecordingDelivery, build_service

# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AccountStore, clock: FakeClock, delivery: RecordingDelivery) -> IdentityService:
    return build_service(store, clock, delivery)


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingDelivery, str], None, None]:
    """Yield (client, delivery, admin_token) for API integration tests.

    The real app and routers are used; only the lifespan is replaced so the
    service points at an isolated shared-memory store and a RecordingDelivery.
    Rate limiting is switched off for the module so repeated signups from the
    same test client do not trip the per-IP limit.
    """
    from api.limiter import limiter
    from api.main import app

    db_name = request.module.__name__.rsplit(".", 1)[-1]
    store = AccountStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    delivery = RecordingDelivery()
    service = build_service(store, FakeClock(), delivery)
    # Codes issued over HTTP expire on wall-clock time.
    service.otp = OTPGenerator(digits=6, expire_seconds=600)

    admin_id = store.create(
        Account(
            signup_method=SignupMethod.EMAIL,
            status=AccountStatus.ACTIVE,
            first_name="Ada",
            last_name="Admin",
            email="admin@example.com",
            credential_hash=service.hasher.hash("adminpass123"),
            role=Role.ADMIN,
        )
    )
    admin_token = service.tokens.issue_pair(str(admin_id), Role.ADMIN.value).access_token

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity = service
        yield

    app.router.lifespan_context = test_lifespan
    limiter.enabled = False

    # base_url must be a host the TrustedHostMiddleware allow-list accepts.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, delivery, admin_token

    limiter.enabled = True
    store.close()
