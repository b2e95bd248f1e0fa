from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Roles at or above this level bypass every permission check.
SUPER_ADMIN_LEVEL = 10

# Where the access-denied panel sends users, and where unauthenticated
# requests are redirected (with ?next=<path>).
DEFAULT_LANDING_PATH = "/admin"
LOGIN_PATH = "/login"


def permission_key(module: str, action: str) -> str:
    """Return the canonical "module.action" string for a permission.

    Both parts are stripped and lower-cased so "Export " + "View" and
    "export" + "view" identify the same capability.
    """
    return f"{module.strip().lower()}.{action.strip().lower()}"


@dataclass(frozen=True)
class UserPermissions:
    """A user's resolved role and permission set. Derived, never persisted.

    Built by rbac.resolver from the user -> role -> role_permissions join and
    held in cache.store.PermissionCache for a fixed TTL.
    """

    user_id: str
    role_id: str
    role_name: str
    role_level: int
    permissions: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class PageRequirement:
    min_level: int
    permissions: tuple[str, ...] = ()


# Permission strings referenced by the console. Anything not listed here can
# still be granted -- the catalogue in the database is authoritative.
class PERMISSIONS:
    DASHBOARD_VIEW = "dashboard.view"

    USERS_VIEW = "admin_users.view"
    USERS_CREATE = "admin_users.create"
    USERS_EDIT = "admin_users.edit"
    USERS_DELETE = "admin_users.delete"
    USERS_APPROVE = "admin_users.approve"

    ROLES_VIEW = "admin_roles.view"
    ROLES_MANAGE = "admin_roles.manage"

    PERMISSIONS_VIEW = "admin_permissions.view"
    PERMISSIONS_MANAGE = "admin_permissions.manage"

    AUDIT_VIEW = "audit.view"
    AUDIT_EXPORT = "audit.export"

    EXPORT_VIEW = "export.view"
    EXPORT_CREATE = "export.create"
    EXPORT_APPROVE = "export.approve"

    REGISTRATION_VIEW = "registration.view"
    REGISTRATION_CREATE = "registration.create"
    REGISTRATION_EDIT = "registration.edit"

    SYSTEM_CONFIG = "admin_config.manage"
    SYSTEM_SECURITY = "system_security.manage"
