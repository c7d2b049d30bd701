"""
tests/conftest.py -- Shared test fixtures for Barcomp integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for users + sessions
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client / web_client: AppHarness around a TestClient for one test module
  - login: helper fixture that posts credentials to the JSON login endpoint

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any api/core import: api.main reads
get_settings() at import time to configure TrustedHostMiddleware, and the
login rate limit is read per request through get_settings().
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from api.main import app
from auth.gate import AuthGate
from auth.models import Role, User, UserStatus
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings

TEST_SECRET = "barcomp-test-secret-key-0123456789abcdef"

ADMIN_EMAIL = "admin@barcomp.id"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "editor@barcomp.id"
USER_PASSWORD = "userpass123"

PROBE_PATH = "/admin/_identity-probe"


# ---------------------------------------------------------------------------
# Routes mounted only for tests
# ---------------------------------------------------------------------------

_mounted = {getattr(route, "path", None) for route in app.routes}

if "/admin/login" not in _mounted:
    from web.routes import router as web_router

    app.include_router(web_router, tags=["Web UI"])

if PROBE_PATH not in _mounted:

    @app.get(PROBE_PATH, include_in_schema=False)
    async def _identity_probe(request: Request) -> dict:
        """Echo what a downstream handler sees after the gate has run."""
        return {
            "user_id": request.headers.get("x-user-id"),
            "role": request.headers.get("x-user-role"),
            "email": request.headers.get("x-user-email"),
            "header_count": sum(1 for k, _ in request.headers.items() if k == "x-user-id"),
        }


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings with a fixed secret so tokens are reproducible across fixtures."""
    values = {"secret_key": TEST_SECRET, "debug": True}
    values.update(overrides)
    return Settings(**values)


def _make_test_stores(db_suffix: str, settings: Settings) -> tuple[UserStore, SessionStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (usually the module name).
    """
    db_url = f"sqlite:///file:test_barcomp_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url), SessionStore(db_url, settings.secret_key)


def _patch_lifespan(settings: Settings, user_store: UserStore, session_store: SessionStore, codec: TokenCodec):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine: a real asyncio.Task is
    required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.codec = codec
        app.state.gate = AuthGate(settings, codec, session_store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def seed_user(store: UserStore, email: str, password: str, role: Role, **fields) -> User:
    user_id = store.create_user(
        User(
            email=email,
            full_name=fields.pop("full_name", email.split("@")[0].title()),
            hashed_password=hash_password(password),
            role=role,
            status=fields.pop("status", UserStatus.ACTIVE),
            email_verified=True,
            **fields,
        )
    )
    return store.get_by_id(user_id)


class AppHarness(NamedTuple):
    client: TestClient
    settings: Settings
    user_store: UserStore
    session_store: SessionStore
    codec: TokenCodec
    admin: User
    user: User


def _harness(db_suffix: str, follow_redirects: bool) -> Generator[AppHarness, None, None]:
    settings = make_settings()
    user_store, session_store = _make_test_stores(db_suffix, settings)
    codec = TokenCodec.from_settings(settings)

    admin = seed_user(user_store, ADMIN_EMAIL, ADMIN_PASSWORD, Role.SUPER_ADMIN, username="superadmin")
    user = seed_user(user_store, USER_EMAIL, USER_PASSWORD, Role.USER, username="editor")

    app.router.lifespan_context = _patch_lifespan(settings, user_store, session_store, codec)

    with TestClient(app, follow_redirects=follow_redirects, raise_server_exceptions=True) as client:
        yield AppHarness(client, settings, user_store, session_store, codec, admin, user)

    session_store.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[AppHarness, None, None]:
    """AppHarness for JSON API tests. Seeds one super admin and one plain user."""
    yield from _harness(f"api_{request.module.__name__.rsplit('.', 1)[-1]}", follow_redirects=True)


@pytest.fixture(scope="module")
def web_client(request) -> Generator[AppHarness, None, None]:
    """AppHarness for gate and web route tests.

    follow_redirects=False is essential: the gate's whole contract is the
    redirect Location, which disappears once the client follows it.
    """
    yield from _harness(f"web_{request.module.__name__.rsplit('.', 1)[-1]}", follow_redirects=False)


@pytest.fixture
def login() -> Callable:
    """Return a helper that logs in through POST /api/v1/auth/login.

    The client's cookie jar is cleared afterwards so each test chooses
    explicitly how to present the token (cookie header or Bearer).
    """

    def _login(client: TestClient, email: str, password: str, remember_me: bool = False):
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password, "rememberMe": remember_me},
        )
        client.cookies.clear()
        return resp

    return _login


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def cookie(token: str, name: str = "auth_token") -> dict[str, str]:
    return {"Cookie": f"{name}={token}"}
