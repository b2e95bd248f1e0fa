"""
core/access.py -- Access decision engine.

Every function here is a pure function of its arguments: no I/O, no cache
lookups, no logging. Given a well-formed UserPermissions (or None) they always
return a bool and never raise.

Decision rules:
  - None permissions (unauthenticated or unresolved) are always denied.
  - role_level >= SUPER_ADMIN_LEVEL passes every permission check.
  - has_any_permission([]) is False; has_all_permissions([]) is True.
  - can_access_page() ORs the level gate with the permission gate.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, rbac/, or cache/.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Optional

from core.models import SUPER_ADMIN_LEVEL, PageRequirement, UserPermissions

# ---------------------------------------------------------------------------
# Page requirements
# ---------------------------------------------------------------------------

ADMIN_PAGE_REQUIREMENTS: dict[str, PageRequirement] = {
    "/admin": PageRequirement(min_level=1, permissions=("dashboard.view",)),
    "/admin/users": PageRequirement(min_level=5, permissions=("admin_users.view",)),
    "/admin/roles": PageRequirement(min_level=7, permissions=("admin_roles.view",)),
    "/admin/permissions": PageRequirement(min_level=9, permissions=("admin_permissions.view",)),
    "/admin/security": PageRequirement(min_level=9, permissions=("system_security.view",)),
    "/admin/sessions": PageRequirement(min_level=7, permissions=("admin_users.view",)),
    "/admin/approvals": PageRequirement(min_level=5, permissions=("admin_users.approve",)),
    "/admin/exports": PageRequirement(min_level=3, permissions=("export.view",)),
    "/admin/audit-logs": PageRequirement(min_level=3, permissions=("audit.view",)),
    "/admin/wards": PageRequirement(min_level=5, permissions=("admin_wards.view",)),
    "/admin/devices": PageRequirement(min_level=5, permissions=("admin_devices.view",)),
    "/admin/config": PageRequirement(min_level=9, permissions=("admin_config.view",)),
}

# Level required for paths with no entry in the requirements table.
_UNLISTED_PATH_MIN_LEVEL = 1


def load_page_requirements(path: str | Path) -> dict[str, PageRequirement]:
    """Load a page requirements table from a JSON file.

    Expected shape:
        {"/admin/exports": {"min_level": 3, "permissions": ["export.view"]}, ...}

    Raises ValueError on any structural problem so a bad file fails at startup
    rather than silently opening or closing pages.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot read page requirements from {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError("Page requirements must be a JSON object keyed by path")

    table: dict[str, PageRequirement] = {}
    for page, entry in raw.items():
        if not isinstance(page, str) or not page.startswith("/"):
            raise ValueError(f"Page key must be an absolute path, got {page!r}")
        if not isinstance(entry, dict):
            raise ValueError(f"Requirement for {page} must be an object")
        min_level = entry.get("min_level")
        perms = entry.get("permissions", [])
        if not isinstance(min_level, int) or isinstance(min_level, bool):
            raise ValueError(f"min_level for {page} must be an integer")
        if not isinstance(perms, list) or not all(isinstance(p, str) for p in perms):
            raise ValueError(f"permissions for {page} must be a list of strings")
        table[page] = PageRequirement(min_level=min_level, permissions=tuple(perms))
    return table


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def _is_super_admin(perms: UserPermissions) -> bool:
    return perms.role_level >= SUPER_ADMIN_LEVEL


def has_permission(perms: Optional[UserPermissions], permission: str) -> bool:
    if perms is None:
        return False
    if _is_super_admin(perms):
        return True
    return permission in perms.permissions


def has_any_permission(perms: Optional[UserPermissions], permissions: Iterable[str]) -> bool:
    """True if the user holds at least one of the permissions. Empty input is a deny."""
    if perms is None:
        return False
    if _is_super_admin(perms):
        return True
    return any(p in perms.permissions for p in permissions)


def has_all_permissions(perms: Optional[UserPermissions], permissions: Iterable[str]) -> bool:
    """True if the user holds every permission. Empty input is vacuously allowed."""
    if perms is None:
        return False
    if _is_super_admin(perms):
        return True
    return all(p in perms.permissions for p in permissions)


def has_min_role_level(perms: Optional[UserPermissions], min_level: int) -> bool:
    if perms is None:
        return False
    return perms.role_level >= min_level


def can_access_page(
    perms: Optional[UserPermissions],
    path: str,
    requirements: Mapping[str, PageRequirement] = ADMIN_PAGE_REQUIREMENTS,
) -> bool:
    """Decide whether the user may open the page at path.

    Listed pages pass on either gate: role level at or above min_level, OR any
    one of the listed permissions. Unlisted pages only need a role with a
    level of at least 1.
    """
    requirement = requirements.get(path)
    if requirement is None:
        return has_min_role_level(perms, _UNLISTED_PATH_MIN_LEVEL)
    return has_min_role_level(perms, requirement.min_level) or has_any_permission(perms, requirement.permissions)
