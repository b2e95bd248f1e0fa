"""
tests/conftest.py -- Shared test fixtures for admin access integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for accounts + RBAC
  - _create_console_user(): account + admin user bound to a seeded role
  - _patch_lifespan(): swaps the real lifespan for one using the test stores
  - api_client / web_client: TestClients with a seeded cast of users

Each module gets its own named shared-memory SQLite database
(file:<name>?mode=memory&cache=shared&uri=true). TestClient runs sync
handlers in worker threads, and a bare :memory: URL would give every thread
its own empty database.

DEBUG=true goes into the environment before anything imports core.config, so
get_settings() generates a SECRET_KEY instead of refusing to start.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

# Must run before the first core.config import below.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import create_access_token, hash_password
from cache.store import PermissionCache
from core.access import ADMIN_PAGE_REQUIREMENTS
from rbac.models import AdminUser
from rbac.resolver import PermissionResolver
from rbac.store import RBACStore

# ---------------------------------------------------------------------------
# Web router
# ---------------------------------------------------------------------------

# Mount the web router once. asgi.py does this in production; importing it
# here would mount a second copy on the same app object.
from web.routes import router as web_router

if not any(getattr(r, "path", None) == "/admin" for r in app.router.routes):
    app.include_router(web_router, tags=["Web UI"])

# TrustedHostMiddleware only admits localhost names.
BASE_URL = "http://localhost"
PASSWORD = "correct-horse-battery"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[AccountStore, RBACStore]:
    """Open an account store and a seeded RBAC store on fresh named databases.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    auth_url = f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true"
    rbac_url = f"sqlite:///file:test_rbac_{db_suffix}?mode=memory&cache=shared&uri=true"
    account_store = AccountStore(db_url=auth_url)
    rbac_store = RBACStore(db_url=rbac_url)
    rbac_store.seed_defaults()
    return account_store, rbac_store


def _create_console_user(
    accounts: AccountStore,
    rbac: RBACStore,
    email: str,
    role_code: Optional[str],
    status: str = "active",
) -> str:
    """Create a sign-in account and its admin user record; return the auth_id."""
    auth_id = accounts.create_account(Account(email=email, hashed_password=hash_password(PASSWORD)))
    role = rbac.get_role_by_code(role_code) if role_code else None
    rbac.create_admin_user(AdminUser(auth_id=auth_id, email=email, role_id=role.id if role else None, status=status))
    return auth_id


def _bearer(auth_id: str, email: str = "") -> dict[str, str]:
    token = create_access_token(auth_id, email or f"{auth_id}@test", expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(account_store: AccountStore, rbac_store: RBACStore, setup_required: bool = False):
    """Build a lifespan that puts the given stores on app.state.

    Each client gets its own PermissionCache, so one module never reads
    another module's resolved permissions. purge_task is a sleeping task
    rather than a mock because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.rbac_store = rbac_store
        app.state.cache = PermissionCache(ttl=300)
        app.state.resolver = PermissionResolver(rbac_store, app.state.cache)
        app.state.page_requirements = ADMIN_PAGE_REQUIREMENTS
        app.state.setup_required = setup_required
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Seeded cast
# ---------------------------------------------------------------------------


@dataclass
class Cast:
    """Users created for an integration test module, keyed by role."""

    client: TestClient
    accounts: AccountStore
    rbac: RBACStore
    ids: dict[str, str] = field(default_factory=dict)

    def headers(self, who: str) -> dict[str, str]:
        return _bearer(self.ids[who])


def _seed_cast(accounts: AccountStore, rbac: RBACStore, prefix: str) -> dict[str, str]:
    """super (level 10), national (9), provincial (7), district (5) with
    export.view granted, viewer (1) with no grants, orphan with no role, and
    suspended (a district admin whose status is suspended)."""
    district = rbac.get_role_by_code("district_admin")
    export_view = rbac.get_permission_by_key("export.view")
    rbac.grant_permission(district.id, export_view.id)
    national = rbac.get_role_by_code("national_admin")
    for key in ("dashboard.view", "admin_roles.view", "admin_permissions.view", "admin_users.view"):
        rbac.grant_permission(national.id, rbac.get_permission_by_key(key).id)

    return {
        "super": _create_console_user(accounts, rbac, f"super@{prefix}.test", "super_admin"),
        "national": _create_console_user(accounts, rbac, f"national@{prefix}.test", "national_admin"),
        "provincial": _create_console_user(accounts, rbac, f"provincial@{prefix}.test", "provincial_admin"),
        "district": _create_console_user(accounts, rbac, f"district@{prefix}.test", "district_admin"),
        "viewer": _create_console_user(accounts, rbac, f"viewer@{prefix}.test", "viewer"),
        "orphan": _create_console_user(accounts, rbac, f"orphan@{prefix}.test", None),
        "suspended": _create_console_user(
            accounts, rbac, f"suspended@{prefix}.test", "district_admin", status="suspended"
        ),
    }


# ---------------------------------------------------------------------------
# Fixtures: one TestClient per module, one per test for setup
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[Cast, None, None]:
    """Yield a Cast for API integration tests.

    Real app and routes; only the lifespan is replaced.
    """
    suffix = f"api_{request.module.__name__.rsplit('.', 1)[-1]}"
    accounts, rbac = _make_test_stores(suffix)
    ids = _seed_cast(accounts, rbac, suffix)
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(accounts, rbac)

    with TestClient(app, base_url=BASE_URL, raise_server_exceptions=True) as client:
        yield Cast(client=client, accounts=accounts, rbac=rbac, ids=ids)

    rbac.close()
    accounts.close()


@pytest.fixture(scope="module")
def web_client(request) -> Generator[Cast, None, None]:
    """Yield a Cast for web route integration tests.

    Redirects are not followed, so tests can assert on Location.
    """
    suffix = f"web_{request.module.__name__.rsplit('.', 1)[-1]}"
    accounts, rbac = _make_test_stores(suffix)
    ids = _seed_cast(accounts, rbac, suffix)

    app.router.lifespan_context = _patch_lifespan(accounts, rbac)

    with TestClient(app, base_url=BASE_URL, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Cast(client=client, accounts=accounts, rbac=rbac, ids=ids)

    rbac.close()
    accounts.close()


@pytest.fixture()
def setup_client(request) -> Generator[Cast, None, None]:
    """Yield a Cast in first-run state: seeded catalogue, no accounts, setup_required=True."""
    suffix = f"setup_{request.node.name}"
    accounts, rbac = _make_test_stores(suffix)

    app.router.lifespan_context = _patch_lifespan(accounts, rbac, setup_required=True)

    with TestClient(app, base_url=BASE_URL, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Cast(client=client, accounts=accounts, rbac=rbac)

    rbac.close()
    accounts.close()
