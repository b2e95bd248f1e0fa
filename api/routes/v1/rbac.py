"""
api/routes/v1/rbac.py -- Role and permission administration REST endpoints.

Routes:
  GET    /api/v1/rbac/roles                                      -- list roles
  GET    /api/v1/rbac/permissions                                -- permission catalogue
  GET    /api/v1/rbac/roles/{role_id}/permissions                -- a role's grants
  POST   /api/v1/rbac/roles/{role_id}/permissions                -- grant
  DELETE /api/v1/rbac/roles/{role_id}/permissions/{permission_id} -- revoke
  GET    /api/v1/rbac/users                                      -- console users
  PATCH  /api/v1/rbac/users/{auth_id}/role                       -- assign / detach role
  DELETE /api/v1/rbac/cache                                      -- drop cached permissions

Cache coherence:
  Grant and revoke change what every holder of the role resolves to, so they
  clear the whole permissions cache. A role assignment only affects one user,
  so it clears that user's entry. Without these calls a change would stay
  invisible for up to PERMISSIONS_CACHE_TTL_SECONDS.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    AdminUserResponse,
    CacheClearResponse,
    GrantRequest,
    GrantResponse,
    PermissionResponse,
    RoleAssign,
    RoleResponse,
)
from auth.dependencies import require_permissions
from core.models import PERMISSIONS, UserPermissions
from rbac.models import AdminUser, Permission, Role
from rbac.resolver import PermissionResolver
from rbac.store import RBACStore

logger = logging.getLogger("brsadmin.rbac")

# Auth policy:
# - GET    /rbac/roles, /rbac/users:          admin_roles.view / admin_users.view
# - GET    /rbac/permissions, role grants:    admin_permissions.view
# - POST   / DELETE grants, DELETE /cache:    admin_permissions.manage
# - PATCH  /rbac/users/{auth_id}/role:        admin_users.edit
router = APIRouter()


def _role_or_404(rbac: RBACStore, role_id: str) -> Role:
    role = rbac.get_role(role_id)
    if role is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    return role


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("/rbac/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.ROLES_VIEW)),
) -> list[RoleResponse]:
    """List all roles, most privileged first."""
    rbac: RBACStore = request.app.state.rbac_store
    matrix = rbac.get_permission_matrix()
    return [_role_to_response(role, len(matrix.get(role.id, ()))) for role in rbac.list_roles()]


@router.get("/rbac/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.PERMISSIONS_VIEW)),
) -> list[PermissionResponse]:
    """Return the full permission catalogue ordered by module then action."""
    rbac: RBACStore = request.app.state.rbac_store
    return [_permission_to_response(p) for p in rbac.list_permissions()]


@router.get("/rbac/roles/{role_id}/permissions", response_model=list[PermissionResponse])
def list_role_permissions(
    request: Request,
    role_id: str,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.PERMISSIONS_VIEW)),
) -> list[PermissionResponse]:
    rbac: RBACStore = request.app.state.rbac_store
    _role_or_404(rbac, role_id)
    return [_permission_to_response(p) for p in rbac.list_role_permissions(role_id)]


@router.get("/rbac/users", response_model=list[AdminUserResponse])
def list_admin_users(
    request: Request,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.USERS_VIEW)),
) -> list[AdminUserResponse]:
    rbac: RBACStore = request.app.state.rbac_store
    return [_admin_user_to_response(u) for u in rbac.list_admin_users()]


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


@router.post("/rbac/roles/{role_id}/permissions", response_model=GrantResponse)
def grant_permission(
    request: Request,
    role_id: str,
    body: GrantRequest,
    response: Response,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.PERMISSIONS_MANAGE)),
) -> GrantResponse:
    """Grant a permission to a role. 201 when newly granted, 200 if it already was."""
    rbac: RBACStore = request.app.state.rbac_store
    resolver: PermissionResolver = request.app.state.resolver
    _role_or_404(rbac, role_id)

    permission = rbac.get_permission(body.permission_id) if body.permission_id else rbac.get_permission_by_key(body.key)
    if permission is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Permission not found."})

    created = rbac.grant_permission(role_id, permission.id, granted_by=perms.user_id)
    if created:
        resolver.clear_permissions_cache()
        logger.info("Granted %s to role %s (by %s)", permission.key, role_id, perms.user_id)
        response.status_code = 201
    return GrantResponse(role_id=role_id, permission=_permission_to_response(permission), created=created)


@router.delete("/rbac/roles/{role_id}/permissions/{permission_id}", status_code=204)
def revoke_permission(
    request: Request,
    role_id: str,
    permission_id: str,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.PERMISSIONS_MANAGE)),
) -> Response:
    rbac: RBACStore = request.app.state.rbac_store
    resolver: PermissionResolver = request.app.state.resolver
    if not rbac.revoke_permission(role_id, permission_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Grant not found."})
    resolver.clear_permissions_cache()
    logger.info("Revoked permission %s from role %s (by %s)", permission_id, role_id, perms.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Role assignment and cache control
# ---------------------------------------------------------------------------


@router.patch("/rbac/users/{auth_id}/role", response_model=AdminUserResponse)
def assign_role(
    request: Request,
    auth_id: str,
    body: RoleAssign,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.USERS_EDIT)),
) -> AdminUserResponse:
    """Attach a role to a console user, or detach it with role_id=null.

    Blocks callers from changing their own role, so an admin cannot lock
    themselves out or promote themselves.
    """
    rbac: RBACStore = request.app.state.rbac_store
    resolver: PermissionResolver = request.app.state.resolver

    if auth_id == perms.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_assignment", "message": "You cannot change your own role."},
        )
    if body.role_id is not None:
        _role_or_404(rbac, body.role_id)
    if not rbac.assign_role(auth_id, body.role_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    resolver.clear_permissions_cache(auth_id)
    logger.info("Role of %s set to %s (by %s)", auth_id, body.role_id, perms.user_id)
    return _admin_user_to_response(rbac.get_admin_user(auth_id))


@router.delete("/rbac/cache", response_model=CacheClearResponse)
def clear_cache(
    request: Request,
    user_id: Optional[str] = None,
    perms: UserPermissions = Depends(require_permissions(PERMISSIONS.PERMISSIONS_MANAGE)),
) -> CacheClearResponse:
    """Drop one user's cached permissions, or everyone's when user_id is omitted."""
    resolver: PermissionResolver = request.app.state.resolver
    resolver.clear_permissions_cache(user_id)
    return CacheClearResponse(cleared=user_id or "all")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _role_to_response(role: Role, permission_count: int = 0) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        code=role.code,
        level=role.level,
        description=role.description,
        is_system_role=role.is_system_role,
        is_active=role.is_active,
        permission_count=permission_count,
    )


def _permission_to_response(permission: Permission) -> PermissionResponse:
    return PermissionResponse(
        id=permission.id,
        key=permission.key,
        module=permission.module,
        action=permission.action,
        name=permission.name,
        is_sensitive=permission.is_sensitive,
        requires_mfa=permission.requires_mfa,
    )


def _admin_user_to_response(user: AdminUser | None) -> AdminUserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return AdminUserResponse(
        auth_id=user.auth_id,
        email=user.email,
        full_name=user.full_name,
        role_id=user.role_id,
        status=user.status,
    )
