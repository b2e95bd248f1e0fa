"""
rbac/models.py -- Domain dataclasses for roles, permissions, and admin users.

These are pure data containers with zero logic beyond derived keys. All
persistence lives in rbac/store.py; resolution lives in rbac/resolver.py.

IDs are opaque strings (UUID4 text). admin_users.auth_id links a console user
to the identity in auth/ -- the same value the session token carries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.models import permission_key

ADMIN_USER_STATUSES = ("active", "pending", "suspended")


@dataclass
class Role:
    """A named privilege tier.

    level orders roles for hierarchy checks (higher = more privileged).
    Level 10 and above is super admin and passes every permission check.
    System roles are seeded at install time and cannot be deleted.
    """

    name: str
    code: str
    level: int
    id: Optional[str] = None
    description: str = ""
    is_system_role: bool = False
    is_active: bool = True
    created_at: Optional[str] = None


@dataclass
class Permission:
    module: str
    action: str
    id: Optional[str] = None
    name: str = ""
    is_sensitive: bool = False  # requires additional approval to exercise
    requires_mfa: bool = False
    created_at: Optional[str] = None

    @property
    def key(self) -> str:
        return permission_key(self.module, self.action)


@dataclass
class RolePermission:
    role_id: str
    permission_id: str
    id: Optional[str] = None
    granted_at: Optional[str] = None
    granted_by: Optional[str] = None


@dataclass
class AdminUser:
    """A console user. Exactly one role at a time.

    clearance_level is tracked for the user record but is not consulted by
    any access decision.
    """

    auth_id: str
    email: str
    role_id: Optional[str] = None
    id: Optional[str] = None
    full_name: str = ""
    clearance_level: int = 1
    status: str = "active"  # "active" | "pending" | "suspended"
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Seed catalogue
# ---------------------------------------------------------------------------

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(
        name="Super Administrator",
        code="super_admin",
        level=10,
        is_system_role=True,
        description="Full system access with all permissions. Reserved for system administrators.",
    ),
    Role(
        name="National Administrator",
        code="national_admin",
        level=9,
        is_system_role=True,
        description="National level access. Can manage all provinces and system configuration.",
    ),
    Role(
        name="Provincial Administrator",
        code="provincial_admin",
        level=7,
        is_system_role=True,
        description="Provincial level access. Can manage all districts within assigned province.",
    ),
    Role(
        name="District Administrator",
        code="district_admin",
        level=5,
        is_system_role=True,
        description="District level access. Can manage all wards within assigned district.",
    ),
    Role(
        name="Ward Supervisor",
        code="ward_supervisor",
        level=4,
        is_system_role=True,
        description="Ward level access. Supervises registration officers in assigned wards.",
    ),
    Role(
        name="Registration Officer",
        code="registration_officer",
        level=2,
        is_system_role=True,
        description="Field officer. Can perform voter registrations in assigned areas.",
    ),
    Role(
        name="Data Entry Operator",
        code="data_entry",
        level=1,
        is_system_role=True,
        description="Limited access for data entry tasks only.",
    ),
    Role(
        name="Auditor",
        code="auditor",
        level=3,
        is_system_role=True,
        description="Read-only access for audit and compliance purposes.",
    ),
    Role(
        name="Viewer",
        code="viewer",
        level=1,
        is_system_role=True,
        description="View-only access to selected modules.",
    ),
)

# module -> (available actions, is_sensitive)
MODULES: dict[str, tuple[tuple[str, ...], bool]] = {
    "dashboard": (("view",), False),
    "registration": (("view", "create", "edit", "update", "approve"), True),
    "deduplication": (("view", "update", "approve", "escalate"), True),
    "registry": (("view", "update", "export"), True),
    "exceptions": (("view", "update", "approve", "escalate"), True),
    "kits": (("view", "create", "update", "delete", "assign"), False),
    "sync": (("view", "manage"), False),
    "gps": (("view",), False),
    "teams": (("view", "create", "update", "delete", "assign"), False),
    "audit": (("view", "export", "audit"), True),
    "custody": (("view", "create", "update"), False),
    "history": (("view", "export"), True),
    "export": (("view", "create", "approve", "export"), True),
    "admin_users": (("view", "create", "edit", "update", "delete", "approve", "assign"), True),
    "admin_roles": (("view", "create", "update", "delete", "assign", "manage"), True),
    "admin_permissions": (("view", "update", "configure", "manage"), True),
    "admin_wards": (("view", "create", "update", "delete"), False),
    "admin_devices": (("view", "create", "update", "delete", "configure"), False),
    "admin_config": (("view", "configure", "manage"), True),
    "system_health": (("view", "manage"), False),
    "system_integrations": (("view", "configure"), True),
    "system_security": (("view", "configure", "audit", "manage"), True),
    "system_backup": (("view", "manage", "export"), True),
}
