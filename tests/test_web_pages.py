"""
tests/test_web_pages.py -- Guarded admin pages rendered through the web router.

Pages authenticate with a Bearer header here; the cookie path is covered in
test_auth_redirect.py.

Coverage:
  - ALLOWED renders the page; DENIED renders the access denied panel (403)
    naming the current role, or "Unknown" when no role resolves
  - Super admin opens every section
  - Unknown sections 404 after the guard passes
  - Dashboard lists only the sections the role can open
  - A store outage renders the retryable 503 panel, never a JSON error
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from api.main import app
from core.access import ADMIN_PAGE_REQUIREMENTS


def _get(cast, who: str, path: str):
    return cast.client.get(path, headers=cast.headers(who))


class TestGuardedPages:
    def test_district_opens_exports(self, web_client) -> None:
        resp = _get(web_client, "district", "/admin/exports")
        assert resp.status_code == 200
        assert "Data Exports" in resp.text
        assert "export.view" in resp.text

    def test_district_denied_permission_matrix(self, web_client) -> None:
        resp = _get(web_client, "district", "/admin/permissions")
        assert resp.status_code == 403
        assert "Access Denied" in resp.text
        assert "District Administrator" in resp.text
        assert "Go Back" in resp.text
        assert "Admin Dashboard" in resp.text

    def test_orphan_denied_with_unknown_role(self, web_client) -> None:
        resp = _get(web_client, "orphan", "/admin")
        assert resp.status_code == 403
        assert "Unknown" in resp.text

    def test_suspended_user_denied(self, web_client) -> None:
        assert _get(web_client, "suspended", "/admin/exports").status_code == 403

    def test_provincial_level_boundary(self, web_client) -> None:
        assert _get(web_client, "provincial", "/admin/roles").status_code == 200
        assert _get(web_client, "provincial", "/admin/permissions").status_code == 403

    @pytest.mark.parametrize("path", sorted(ADMIN_PAGE_REQUIREMENTS))
    def test_super_admin_opens_every_page(self, web_client, path: str) -> None:
        assert _get(web_client, "super", path).status_code == 200

    def test_unknown_section_is_404(self, web_client) -> None:
        assert _get(web_client, "district", "/admin/not-a-section").status_code == 404

    def test_unknown_section_still_guarded(self, web_client) -> None:
        assert web_client.client.get("/admin/not-a-section").status_code == 302


class TestPageContent:
    def test_dashboard_shows_role_and_sections(self, web_client) -> None:
        resp = _get(web_client, "district", "/admin")
        assert resp.status_code == 200
        assert 'data-testid="role-name">District Administrator<' in resp.text
        assert 'href="/admin/exports"' in resp.text
        assert 'href="/admin/permissions"' not in resp.text

    def test_permission_matrix_marks_grants(self, web_client) -> None:
        resp = _get(web_client, "super", "/admin/permissions")
        assert "export.view" in resp.text
        assert "District Administrator" in resp.text

    def test_users_page_lists_console_users(self, web_client) -> None:
        resp = _get(web_client, "national", "/admin/users")
        assert resp.status_code == 200
        assert "district@web_test_web_pages.test" in resp.text

    def test_roles_page_lists_codes(self, web_client) -> None:
        resp = _get(web_client, "national", "/admin/roles")
        assert "super_admin" in resp.text
        assert "viewer" in resp.text


class TestBackendOutage:
    @staticmethod
    def _down(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def _assert_retry_panel(self, resp, path: str) -> None:
        assert resp.status_code == 503
        assert "text/html" in resp.headers["content-type"]
        assert "Permissions Unavailable" in resp.text
        assert "Try again" in resp.text
        assert f'href="{path}"' in resp.text
        assert "You do not have permission" not in resp.text

    def test_resolver_outage_renders_retry_panel(self, web_client, monkeypatch) -> None:
        app.state.resolver.clear_permissions_cache()
        monkeypatch.setattr(web_client.rbac, "get_user_role", self._down)
        self._assert_retry_panel(_get(web_client, "district", "/admin/exports"), "/admin/exports")

    def test_account_store_outage_renders_retry_panel(self, web_client, monkeypatch) -> None:
        app.state.resolver.clear_permissions_cache()
        monkeypatch.setattr(web_client.accounts, "get_by_auth_id", self._down)
        monkeypatch.setattr(web_client.rbac, "get_user_role", self._down)
        self._assert_retry_panel(_get(web_client, "district", "/admin"), "/admin")

    def test_account_store_outage_alone(self, web_client, monkeypatch) -> None:
        monkeypatch.setattr(web_client.accounts, "get_by_auth_id", self._down)
        self._assert_retry_panel(_get(web_client, "super", "/admin/roles"), "/admin/roles")

    def test_retry_after_recovery_is_a_fresh_decision(self, web_client, monkeypatch) -> None:
        app.state.resolver.clear_permissions_cache()
        with monkeypatch.context() as m:
            m.setattr(web_client.rbac, "get_user_role", self._down)
            assert _get(web_client, "district", "/admin/exports").status_code == 503
        assert _get(web_client, "district", "/admin/exports").status_code == 200
