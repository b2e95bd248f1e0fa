"""
auth/dependencies.py -- FastAPI Depends() helpers for identity and permissions.

Identity is taken from, in priority order:
  1. JWT cookie ("access_token") -- set by the web UI sign-in flow.
  2. Authorization: Bearer <token> header -- API clients.

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_permissions() resolves the identity's permissions through
app.state.resolver and maps each failure kind to its own response:

  unauthenticated          -> 401 unauthorized
  resolution BACKEND_ERROR -> 503 permissions_unavailable
  resolution NOT_FOUND     -> 403 unresolved
  decision DENY            -> 403 forbidden

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.models import Account
from auth.tokens import decode_access_token
from core.access import has_all_permissions, has_any_permission
from core.models import UserPermissions
from rbac.resolver import PermissionResolver, ResolutionStatus

logger = logging.getLogger("brsadmin.auth")


def _token_from_request(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_current_identity(request: Request) -> Account | None:
    """Authenticate the request via cookie or Bearer token.

    Returns the active Account on success, None on any failure. Never raises.
    """
    token = _token_from_request(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    account = request.app.state.account_store.get_by_auth_id(payload["sub"])
    if account is None or not account.is_active:
        return None
    return account


def get_current_identity(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    account = try_get_current_identity(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return account


def get_current_permissions(request: Request, account: Account = Depends(get_current_identity)) -> UserPermissions:
    """Resolve the current identity's permissions or raise 403/503."""
    resolver: PermissionResolver = request.app.state.resolver
    result = resolver.resolve(account.auth_id)
    if result.status is ResolutionStatus.BACKEND_ERROR:
        raise HTTPException(
            status_code=503,
            detail={"code": "permissions_unavailable", "message": "Permissions could not be resolved. Try again."},
        )
    if result.permissions is None:
        raise HTTPException(
            status_code=403,
            detail={"code": "unresolved", "message": "No role is assigned to this account."},
        )
    return result.permissions


def require_permissions(*permissions: str, mode: str = "any") -> Callable[..., UserPermissions]:
    """Build a dependency that requires any (default) or all of the given permissions.

    Use as a FastAPI dependency:
        @router.get("/roles")
        def route(perms: UserPermissions = Depends(require_permissions("admin_roles.view"))): ...
    """
    if mode not in ("any", "all"):
        raise ValueError(f"mode must be 'any' or 'all', got {mode!r}")
    check = has_any_permission if mode == "any" else has_all_permissions

    def dependency(perms: UserPermissions = Depends(get_current_permissions)) -> UserPermissions:
        if not check(perms, permissions):
            logger.info("Denied %s (%s) for %s", ", ".join(permissions), mode, perms.user_id)
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "You do not have permission to perform this action."},
            )
        return perms

    return dependency
