"""
tests/conftest.py -- Shared test fixtures for agg-api.

This module provides:
  - clock / codec: a FrozenClock and a TokenCodec bound to it
  - engine: a fresh file-backed SQLite AsyncEngine per test (async fixture)
  - _patch_lifespan(): wires a test database and seed users into app.state,
    bypassing the real startup
  - api: module-scoped TestClient plus admin/user ids and tokens

Design: file-backed SQLite under tmp_path rather than :memory:. TestClient
runs the app on its own event loop thread, and an in-memory aiosqlite database
lives and dies with a single connection; a temp file gives every pooled
connection the same schema.

Environment variables must be set before any api/ or core/ import, because
get_settings() is cached on first use and the app reads it at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

# CRITICAL: Set env before any api/core import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.main import app, init_auth
from auth.models import User
from auth.passwords import hash_password
from auth.tokens import TokenCodec
from core.config import get_settings
from core.db import create_engine, create_schema
from fakes import FrozenClock

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "user@example.com"
USER_PASSWORD = "userpass123"

# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def codec(clock: FrozenClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database with the full schema, disposed after the test."""
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_schema(eng)
    yield eng
    await eng.dispose()


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    admin_id: int
    admin_token: str
    user_id: int
    user_token: str


def _patch_lifespan(database_url: str):
    """Return an async context manager that replaces the real lifespan.

    Runs the same init_auth() wiring as production against the test
    database, then seeds one admin and one regular user. The seed ids land
    on app.state for the fixture to read back.
    """
    settings = get_settings().model_copy(update={"database_url": database_url, "secret_key": TEST_SECRET})

    @asynccontextmanager
    async def test_lifespan(app):
        await init_auth(app, settings)
        store = app.state.user_store
        app.state.seed_admin_id = await store.create_user(
            User(name="Admin", email=ADMIN_EMAIL, hashed_password=hash_password(ADMIN_PASSWORD), is_admin=True)
        )
        app.state.seed_user_id = await store.create_user(
            User(name="Regular", email=USER_EMAIL, hashed_password=hash_password(USER_PASSWORD))
        )
        app.state.setup_required = False
        yield
        await app.state.engine.dispose()

    return test_lifespan


@pytest.fixture(scope="module")
def api(tmp_path_factory) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated database per module.
    Long-lived access tokens are minted with the app's own codec.
    """
    db_path = tmp_path_factory.mktemp("api") / "api.db"
    app.router.lifespan_context = _patch_lifespan(f"sqlite+aiosqlite:///{db_path}")

    with TestClient(app, raise_server_exceptions=True) as client:
        codec: TokenCodec = app.state.token_codec
        admin_id = app.state.seed_admin_id
        user_id = app.state.seed_user_id
        yield ApiContext(
            client=client,
            admin_id=admin_id,
            admin_token=codec.issue(admin_id, True, timedelta(hours=1)).value,
            user_id=user_id,
            user_token=codec.issue(user_id, False, timedelta(hours=1)).value,
        )
