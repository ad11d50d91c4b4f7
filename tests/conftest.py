"""
tests/conftest.py -- Shared test fixtures for the JWT Pizza tests.

This module provides:
  - db / user_store / pizza_store / sessions: isolated in-memory stores for
    unit tests (fresh database per test)
  - make_user: factory fixture registering a user straight through UserStore
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient with an admin token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API client because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any project import so
get_settings() auto-generates SECRET_KEY in dev mode, uses the cheapest
bcrypt cost and does not throttle repeated test logins.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set env before any project import so get_settings() picks it up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, RoleAssignment, User
from auth.store import UserStore
from auth.tokens import SessionAuthority
from core.database import Database
from core.metrics import Metrics
from pizza.factory import FactoryClient
from pizza.store import PizzaStore

TEST_SECRET = "test-secret-key-with-at-least-32-characters!"


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def user_store(db: Database) -> UserStore:
    return UserStore(db, hash_rounds=4)


@pytest.fixture
def pizza_store(db: Database) -> PizzaStore:
    return PizzaStore(db, orders_per_page=3)


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def sessions(user_store: UserStore) -> SessionAuthority:
    return SessionAuthority(user_store, TEST_SECRET)


def _register(store: UserStore, name: str, roles: list[RoleAssignment] | None = None, password: str = "pw") -> User:
    """Register a user named name with email <name>@jwt.com."""
    return store.add_user(
        User(
            name=name,
            email=f"{name}@jwt.com",
            password=password,
            roles=roles if roles is not None else [RoleAssignment(Role.DINER)],
        )
    )


@pytest.fixture
def make_user(user_store: UserStore):
    """Factory fixture: make_user("name", roles=[...], password="pw") -> stored User."""

    def _make(name: str, roles: list[RoleAssignment] | None = None, password: str = "pw") -> User:
        return _register(user_store, name, roles, password)

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, user_store: UserStore, factory: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test services into app.state so TestClient routes see
    an isolated test DB rather than the configured one. The factory client is
    a MagicMock so no test ever calls out to the network; the metrics
    registry is real but has no push URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.user_store = user_store
        app.state.pizza_store = PizzaStore(db, orders_per_page=10)
        app.state.sessions = SessionAuthority(user_store, TEST_SECRET)
        app.state.factory = factory
        app.state.metrics = Metrics()
        app.state.metrics_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.metrics_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    The admin user (admin@jwt.com / "admin") is created before the client
    starts and logged in through the session authority.
    """
    db = Database(f"sqlite:///file:test_pizza_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    user_store = UserStore(db, hash_rounds=4)
    admin = _register(user_store, "admin", roles=[RoleAssignment(Role.ADMIN)], password="admin")

    factory = MagicMock(spec=FactoryClient)
    app.router.lifespan_context = _patch_lifespan(db, user_store, factory)

    with TestClient(app, raise_server_exceptions=True) as client:
        token = app.state.sessions.issue(admin)
        yield client, token, admin.id

    db.close()
