"""
API request and response models for the admin access REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
rbac/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: core/ and rbac/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.models import UserPermissions

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# "module.action", lower case, e.g. "admin_users.view"
PERMISSION_KEY_PATTERN = r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CheckMode(str, Enum):
    any = "any"
    all = "all"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "degraded" when the RBAC database does not answer; the endpoint
    itself still returns 200 so liveness probes keep working.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
    cached_users: int = 0


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    auth_id: str
    email: str


class PermissionsSummary(BaseModel):
    """A resolved permission set as exposed over HTTP."""

    role_id: str
    role_name: str
    role_level: int
    is_super_admin: bool
    permissions: list[str]

    @classmethod
    def from_domain(cls, perms: UserPermissions, super_admin_level: int) -> "PermissionsSummary":
        return cls(
            role_id=perms.role_id,
            role_name=perms.role_name,
            role_level=perms.role_level,
            is_super_admin=perms.role_level >= super_admin_level,
            permissions=sorted(perms.permissions),
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me.

    permissions is None when the identity is signed in but not resolvable
    (no admin user record, no role, inactive role, suspended user).
    resolution carries the status so clients can tell an outage from a
    missing role.
    """

    auth_id: str
    email: str
    last_login: Optional[str] = None
    resolution: str
    permissions: Optional[PermissionsSummary] = None


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------


class AccessCheckRequest(BaseModel):
    """Request body for POST /api/v1/access/check. At least one of path or permissions."""

    model_config = ConfigDict(str_strip_whitespace=True)

    path: Optional[str] = Field(default=None, max_length=255)
    permissions: Optional[list[str]] = Field(default=None, max_length=100)
    mode: CheckMode = CheckMode.any

    @model_validator(mode="after")
    def require_subject(self) -> "AccessCheckRequest":
        if self.path is None and self.permissions is None:
            raise ValueError("Provide a path, a permissions list, or both.")
        return self


class AccessCheckResponse(BaseModel):
    """Each field is None when the corresponding input was not supplied."""

    page_allowed: Optional[bool] = None
    permissions_allowed: Optional[bool] = None
    allowed: bool
    role_name: str
    role_level: int


# ---------------------------------------------------------------------------
# RBAC administration
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    id: str
    name: str
    code: str
    level: int
    description: str
    is_system_role: bool
    is_active: bool
    permission_count: int = 0


class PermissionResponse(BaseModel):
    id: str
    key: str
    module: str
    action: str
    name: str
    is_sensitive: bool
    requires_mfa: bool


class GrantRequest(BaseModel):
    """Request body for POST /api/v1/rbac/roles/{role_id}/permissions.

    Identify the permission by id or by its "module.action" key.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    permission_id: Optional[str] = Field(default=None, max_length=36)
    key: Optional[str] = Field(default=None, max_length=81, pattern=PERMISSION_KEY_PATTERN)

    @model_validator(mode="after")
    def require_one(self) -> "GrantRequest":
        if (self.permission_id is None) == (self.key is None):
            raise ValueError("Provide exactly one of permission_id or key.")
        return self


class GrantResponse(BaseModel):
    role_id: str
    permission: PermissionResponse
    created: bool


class RoleAssign(BaseModel):
    """Request body for PATCH /api/v1/rbac/users/{auth_id}/role. null detaches the role."""

    role_id: Optional[str] = Field(default=None, max_length=36)


class AdminUserResponse(BaseModel):
    auth_id: str
    email: str
    full_name: str
    role_id: Optional[str]
    status: str


class CacheClearResponse(BaseModel):
    cleared: str  # "all" or the user id
