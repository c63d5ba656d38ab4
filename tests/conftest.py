"""
tests/conftest.py -- Shared test fixtures for the farm admin integration tests.

This module provides:
  - _make_test_stores(): builds every store on one isolated in-memory DB
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus SUPERADMIN and OPERADOR session tokens
  - engine: a private in-memory Engine for store-level unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any project import: get_settings()
is cached on first use and the middleware reads it at module load.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
# The slowapi memory store is process-wide; keep it out of the way.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SMTP_HOST", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from approvals.store import ApprovalStore
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from core.database import create_db_engine
from farm.store import FarmStore
from notify.mailer import Mailer

ADMIN_EMAIL = "admin@granja.pe"
ADMIN_PASSWORD = "adminpass123"
OPERATOR_EMAIL = "operador@granja.pe"
OPERATOR_PASSWORD = "operpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> SimpleNamespace:
    """Create every store on one named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the module name is used).
    """
    url = f"sqlite:///file:test_piscicola_{db_suffix}?mode=memory&cache=shared&uri=true"
    engine = create_db_engine(url)
    return SimpleNamespace(
        engine=engine,
        user_store=UserStore(engine),
        farm_store=FarmStore(engine),
        approvals=ApprovalStore(engine, code_ttl_hours=get_settings().auth_code_ttl_hours),
        mailer=Mailer(get_settings()),
    )


def _patch_lifespan(stores: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    an isolated test DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = stores.engine
        app.state.user_store = stores.user_store
        app.state.farm_store = stores.farm_store
        app.state.approvals = stores.approvals
        app.state.mailer = stores.mailer
        yield

    return test_lifespan


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, operator_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory database. One
    SUPERADMIN and one OPERADOR are created before the client starts; the
    stores are reachable as client.app.state.<name>.
    """
    stores = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])

    admin_id = stores.user_store.create_user(
        User(name="Admin Granja", email=ADMIN_EMAIL, role=Role.SUPERADMIN, hashed_password=hash_password(ADMIN_PASSWORD))
    )
    operator_id = stores.user_store.create_user(
        User(name="Operador Uno", email=OPERATOR_EMAIL, role=Role.OPERADOR, hashed_password=hash_password(OPERATOR_PASSWORD))
    )
    admin_token = create_access_token(admin_id, ADMIN_EMAIL, Role.SUPERADMIN.value, name="Admin Granja")
    operator_token = create_access_token(operator_id, OPERATOR_EMAIL, Role.OPERADOR.value, name="Operador Uno")

    app.router.lifespan_context = _patch_lifespan(stores)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, admin_token, operator_token

    stores.engine.dispose()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A fresh private in-memory database for store-level unit tests."""
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()
