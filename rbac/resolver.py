"""
rbac/resolver.py -- Resolve an identity to its role and permission set.

Resolution is a two-step lookup against the RBAC store:
  1. admin_users -> roles       (get_user_role)
  2. role_permissions -> perms  (get_role_permission_keys)

and produces a tagged Resolution:
  OK             -- permissions attached; written to the cache
  NOT_FOUND      -- unknown identity, no role attached, inactive role, or a
                    user whose status is not "active"; callers deny all
  BACKEND_ERROR  -- the store raised during either lookup; callers still deny,
                    but can tell an outage apart from an unprivileged user

Only OK results are cached. A cache hit returns OK without touching the store.

get_user_permissions() keeps the older nullable surface: both failure kinds
collapse to None. New callers should use resolve().

Layer rule: no imports from api/, web/, or auth/.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from cache.store import PermissionCache
from core.models import UserPermissions
from rbac.models import Role

logger = logging.getLogger("brsadmin.rbac")


class RoleSource(Protocol):
    """The two read queries the resolver needs. RBACStore satisfies this."""

    def get_user_role(self, auth_id: str): ...

    def get_role_permission_keys(self, role_id: str) -> list[str]: ...


class ResolutionStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    BACKEND_ERROR = "backend_error"


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    permissions: Optional[UserPermissions] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.OK


_NOT_FOUND = Resolution(ResolutionStatus.NOT_FOUND)
_BACKEND_ERROR = Resolution(ResolutionStatus.BACKEND_ERROR)


class PermissionResolver:
    """Resolve user IDs to UserPermissions, memoized in a PermissionCache.

    Usage:
        resolver = PermissionResolver(RBACStore(), PermissionCache(ttl=300))
        result = resolver.resolve("auth-id")
        if result.ok:
            perms = result.permissions
        resolver.clear_permissions_cache("auth-id")   # after a role change
    """

    def __init__(self, store: RoleSource, cache: PermissionCache) -> None:
        self.store = store
        self.cache = cache

    def resolve(self, user_id: str) -> Resolution:
        cached = self.cache.get(user_id)
        if cached is not None:
            return Resolution(ResolutionStatus.OK, cached, from_cache=True)

        try:
            found = self.store.get_user_role(user_id)
            if found is None:
                logger.info("No admin user for identity %s", user_id)
                return _NOT_FOUND
            user, role = found
            if not _role_usable(role):
                logger.info("Identity %s has no active role attached", user_id)
                return _NOT_FOUND
            if user.status != "active":
                logger.info("Identity %s has status %r", user_id, user.status)
                return _NOT_FOUND
            keys = self.store.get_role_permission_keys(role.id)
        except (SQLAlchemyError, OSError):
            logger.exception("Permission resolution failed for identity %s", user_id)
            return _BACKEND_ERROR

        perms = UserPermissions(
            user_id=user_id,
            role_id=role.id,
            role_name=role.name,
            role_level=role.level,
            permissions=frozenset(keys),
        )
        self.cache.set(user_id, perms)
        return Resolution(ResolutionStatus.OK, perms)

    def get_user_permissions(self, user_id: str) -> Optional[UserPermissions]:
        """Return the user's permissions, or None when unresolved for any reason."""
        return self.resolve(user_id).permissions

    def clear_permissions_cache(self, user_id: Optional[str] = None) -> None:
        """Drop one user's cached permissions, or everyone's when user_id is None."""
        if user_id:
            self.cache.invalidate(user_id)
            logger.info("Permissions cache cleared for %s", user_id)
        else:
            self.cache.invalidate_all()
            logger.info("Permissions cache cleared for all users")


def _role_usable(role: Optional[Role]) -> bool:
    return role is not None and role.id is not None and role.is_active
