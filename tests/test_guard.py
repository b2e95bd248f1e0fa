"""
tests/test_guard.py -- AccessGuard state machine and redirect helpers.

Covers:
  - REDIRECT with a login URL carrying the requested path
  - ALLOWED / DENIED from the page table and optional gates
  - NOT_FOUND, BACKEND_ERROR, and a raising resolver all fail closed
  - a superseded check's result is discarded
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from core.models import SUPER_ADMIN_LEVEL, UserPermissions
from rbac.resolver import Resolution, ResolutionStatus
from web.guard import AccessGuard, GuardState, evaluate_access, login_redirect, safe_path


def _ok(level: int, *keys: str, role_name: str = "District Administrator") -> Resolution:
    perms = UserPermissions("u42", "r-test", role_name, level, frozenset(keys))
    return Resolution(ResolutionStatus.OK, perms)


class StubResolver:
    def __init__(self, results: dict[str, Resolution]) -> None:
        self.results = results

    def resolve(self, user_id: str) -> Resolution:
        return self.results.get(user_id, Resolution(ResolutionStatus.NOT_FOUND))


class RaisingResolver:
    def resolve(self, user_id: str) -> Resolution:
        raise RuntimeError("resolver bug")


@pytest.fixture()
def guard() -> AccessGuard:
    return AccessGuard(
        StubResolver(
            {
                "u42": _ok(5, "export.view"),
                "root": _ok(SUPER_ADMIN_LEVEL, role_name="Super Administrator"),
                "down": Resolution(ResolutionStatus.BACKEND_ERROR),
            }
        )
    )


class TestCheck:
    def test_starts_checking(self, guard: AccessGuard) -> None:
        assert guard.state is GuardState.CHECKING
        assert guard.decision is None

    def test_no_identity_redirects_to_login(self, guard: AccessGuard) -> None:
        decision = asyncio.run(guard.check(None, "/admin/exports"))
        assert decision.state is GuardState.REDIRECT
        assert decision.redirect_to == "/login?next=/admin/exports"
        assert guard.state is GuardState.REDIRECT

    def test_allowed(self, guard: AccessGuard) -> None:
        decision = asyncio.run(guard.check("u42", "/admin/exports"))
        assert decision.allowed
        assert decision.permissions.role_level == 5
        assert guard.decision is decision

    def test_denied_carries_role_name(self, guard: AccessGuard) -> None:
        decision = asyncio.run(guard.check("u42", "/admin/permissions"))
        assert decision.state is GuardState.DENIED
        assert decision.role_name == "District Administrator"
        assert decision.reason == "page"
        assert not decision.retryable
        assert decision.permissions is None

    def test_unknown_identity_denied(self, guard: AccessGuard) -> None:
        decision = asyncio.run(guard.check("stranger", "/admin"))
        assert decision.state is GuardState.DENIED
        assert decision.role_name is None
        assert decision.reason == "unresolved"

    def test_backend_error_denied_and_retryable(self, guard: AccessGuard) -> None:
        decision = asyncio.run(guard.check("down", "/admin"))
        assert decision.state is GuardState.DENIED
        assert decision.retryable

    def test_raising_resolver_denied(self) -> None:
        decision = asyncio.run(AccessGuard(RaisingResolver()).check("u42", "/admin"))
        assert decision.state is GuardState.DENIED
        assert decision.reason == "error"

    def test_required_permissions_gate(self, guard: AccessGuard) -> None:
        assert asyncio.run(guard.check("u42", "/admin/exports", required_permissions=["export.view"])).allowed
        denied = asyncio.run(guard.check("u42", "/admin/exports", required_permissions=["export.create"]))
        assert denied.reason == "permissions"

    def test_empty_required_permissions_denies_non_super_admin(self, guard: AccessGuard) -> None:
        assert not asyncio.run(guard.check("u42", "/admin/exports", required_permissions=[])).allowed
        assert asyncio.run(guard.check("root", "/admin/exports", required_permissions=[])).allowed

    def test_min_role_level_gate(self, guard: AccessGuard) -> None:
        assert asyncio.run(guard.check("u42", "/admin/exports", min_role_level=5)).allowed
        denied = asyncio.run(guard.check("u42", "/admin/exports", min_role_level=6))
        assert denied.reason == "role_level"

    def test_decisions_are_not_sticky(self, guard: AccessGuard) -> None:
        asyncio.run(guard.check("u42", "/admin/permissions"))
        assert guard.state is GuardState.DENIED
        asyncio.run(guard.check("u42", "/admin/exports"))
        assert guard.state is GuardState.ALLOWED


class TestStaleDiscard:
    def test_superseded_check_returns_none(self) -> None:
        started = threading.Event()
        release = threading.Event()

        class SlowResolver:
            def resolve(self, user_id: str) -> Resolution:
                if user_id == "slow":
                    started.set()
                    release.wait(5)
                    return _ok(SUPER_ADMIN_LEVEL)
                return _ok(1, role_name="Viewer")

        guard = AccessGuard(SlowResolver())

        async def scenario():
            first = asyncio.create_task(guard.check("slow", "/admin/config"))
            while not started.is_set():
                await asyncio.sleep(0.01)
            second = await guard.check("fast", "/admin/config")
            release.set()
            return await first, second

        first, second = asyncio.run(scenario())
        assert first is None
        assert second.state is GuardState.DENIED
        assert second.role_name == "Viewer"
        assert guard.decision is second


class TestEvaluateAccess:
    def test_none_resolution_denied(self) -> None:
        assert evaluate_access(None, "/admin").state is GuardState.DENIED

    def test_custom_requirements(self) -> None:
        from core.models import PageRequirement

        table = {"/reports": PageRequirement(min_level=8)}
        assert not evaluate_access(_ok(5), "/reports", table).allowed
        assert evaluate_access(_ok(8), "/reports", table).allowed


class TestRedirectHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("/admin/exports", "/admin/exports"),
            ("/admin?tab=1", "/admin?tab=1"),
            ("//evil.example", "/"),
            ("https://evil.example/", "/"),
            ("admin", "/"),
            ("", "/"),
            (None, "/"),
        ],
    )
    def test_safe_path(self, raw, expected: str) -> None:
        assert safe_path(raw) == expected

    def test_login_redirect_quotes_query(self) -> None:
        assert login_redirect("/admin?tab=a b") == "/login?next=/admin%3Ftab%3Da%20b"

    def test_login_redirect_drops_offsite_target(self) -> None:
        assert login_redirect("//evil.example") == "/login?next=/"
