"""
rbac/store.py -- SQLAlchemy Core persistence layer for roles and permissions.

Pattern: Repository + Data Mapper (same as auth/store.py).
RBACStore is the repository; the _row_to_* functions are the mappers.
The resolver and route code never touch SQL directly.

Tables:
  roles             -- privilege tiers ordered by level
  permissions       -- (module, action) catalogue, unique per pair
  role_permissions  -- many-to-many grant table, unique per (role, permission)
  admin_users       -- console users; auth_id links to the identity in auth/

The resolver reads through exactly two methods, in this order:
  get_user_role(auth_id)            -- admin_users LEFT JOIN roles
  get_role_permission_keys(role_id) -- role_permissions JOIN permissions

Errors: every method lets sqlalchemy.exc.SQLAlchemyError propagate, except
that grant_permission reports a duplicate role/permission pair as False.
The resolver turns store errors into a BACKEND_ERROR resolution; any other
error reaching an admin route becomes 503 database_unavailable. Duplicate
account or role rows raise IntegrityError for the caller (the CLI and
POST /setup) to handle.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, web/, or auth/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.models import permission_key
from rbac.models import ADMIN_USER_STATUSES, DEFAULT_ROLES, MODULES, AdminUser, Permission, Role

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'brsadmin_rbac.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_roles = Table(
    "roles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("code", String(50), nullable=False, unique=True),
    Column("level", Integer, nullable=False),
    Column("description", Text),
    Column("is_system_role", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("module", String(50), nullable=False),
    Column("action", String(30), nullable=False),
    Column("name", String(150)),
    Column("is_sensitive", Integer, nullable=False, server_default="0"),
    Column("requires_mfa", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("module", "action", name="uq_permission_module_action"),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("role_id", String(36), nullable=False, index=True),
    Column("permission_id", String(36), nullable=False),
    Column("granted_at", String(32), nullable=False),
    Column("granted_by", String(36)),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)

_admin_users = Table(
    "admin_users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("auth_id", String(64), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("full_name", String(255)),
    Column("role_id", String(36)),  # NULL = no role attached, resolves to deny-all
    Column("clearance_level", Integer, nullable=False, server_default="1"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection: PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RBACStore:
    """Repository for Role, Permission, RolePermission, and AdminUser entities.

    Usage:
        store = RBACStore()
        store.seed_defaults()
        role = store.get_role_by_code("district_admin")
        store.create_admin_user(AdminUser(auth_id="...", email="a@b", role_id=role.id))
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Resolver reads
    # ------------------------------------------------------------------

    def get_user_role(self, auth_id: str) -> Optional[tuple[AdminUser, Optional[Role]]]:
        """Look up an admin user by external identity together with their role.

        Returns None if no admin user has this auth_id. Returns (user, None)
        when the user exists but has no role attached, or the role_id points
        at a role that no longer exists.
        """
        stmt = (
            select(
                _admin_users,
                _roles.c.id.label("r_id"),
                _roles.c.name.label("r_name"),
                _roles.c.code.label("r_code"),
                _roles.c.level.label("r_level"),
                _roles.c.description.label("r_description"),
                _roles.c.is_system_role.label("r_is_system_role"),
                _roles.c.is_active.label("r_is_active"),
                _roles.c.created_at.label("r_created_at"),
            )
            .select_from(_admin_users.outerjoin(_roles, _admin_users.c.role_id == _roles.c.id))
            .where(_admin_users.c.auth_id == auth_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        role: Optional[Role] = None
        if row.r_id is not None:
            role = Role(
                id=row.r_id,
                name=row.r_name,
                code=row.r_code,
                level=row.r_level,
                description=row.r_description or "",
                is_system_role=bool(row.r_is_system_role),
                is_active=bool(row.r_is_active),
                created_at=row.r_created_at,
            )
        return _row_to_admin_user(row), role

    def get_role_permission_keys(self, role_id: str) -> list[str]:
        """Return the sorted "module.action" strings granted to a role."""
        stmt = (
            select(_permissions.c.module, _permissions.c.action)
            .select_from(_role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return sorted({permission_key(r.module, r.action) for r in rows})

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> str:
        """Insert a role and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the code already exists.
        """
        role_id = role.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _roles.insert().values(
                    id=role_id,
                    name=role.name,
                    code=role.code,
                    level=role.level,
                    description=role.description,
                    is_system_role=1 if role.is_system_role else 0,
                    is_active=1 if role.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return role_id

    def get_role(self, role_id: str) -> Optional[Role]:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_code(self, code: str) -> Optional[Role]:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.code == code)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        """Return all roles, most privileged first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.level.desc(), _roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> str:
        """Insert a permission and return its ID.

        module and action are normalized to lower case so the stored pair
        always matches permission_key(). Raises IntegrityError on a duplicate
        (module, action) pair.
        """
        perm_id = permission.id or _new_id()
        module = permission.module.strip().lower()
        action = permission.action.strip().lower()
        with self.engine.connect() as conn:
            conn.execute(
                _permissions.insert().values(
                    id=perm_id,
                    module=module,
                    action=action,
                    name=permission.name or permission_key(module, action),
                    is_sensitive=1 if permission.is_sensitive else 0,
                    requires_mfa=1 if permission.requires_mfa else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return perm_id

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_key(self, key: str) -> Optional[Permission]:
        """Look up a permission by its "module.action" string."""
        module, sep, action = key.strip().lower().partition(".")
        if not sep or not module or not action:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.module == module) & (_permissions.c.action == action))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.module, _permissions.c.action)).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant_permission(self, role_id: str, permission_id: str, granted_by: Optional[str] = None) -> bool:
        """Grant a permission to a role. Returns False if it was already granted.

        Two concurrent grants of the same pair can both pass the existence
        check; uq_role_permission rejects the second insert and that caller
        gets False too.
        """
        pair = (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
        with self.engine.connect() as conn:
            if conn.execute(_role_permissions.select().where(pair)).fetchone() is not None:
                return False
            try:
                conn.execute(
                    _role_permissions.insert().values(
                        id=_new_id(),
                        role_id=role_id,
                        permission_id=permission_id,
                        granted_at=_now_iso(),
                        granted_by=granted_by,
                    )
                )
                conn.commit()
            except IntegrityError:
                conn.rollback()
                if conn.execute(_role_permissions.select().where(pair)).fetchone() is None:
                    raise
                return False
        return True

    def revoke_permission(self, role_id: str, permission_id: str) -> bool:
        """Remove a grant. Returns True if a grant was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _role_permissions.delete().where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def list_role_permissions(self, role_id: str) -> list[Permission]:
        stmt = (
            select(_permissions)
            .select_from(_role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.module, _permissions.c.action)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_permission_matrix(self) -> dict[str, set[str]]:
        """Return {role_id: {permission keys}} for every role with at least one grant."""
        stmt = select(
            _role_permissions.c.role_id, _permissions.c.module, _permissions.c.action
        ).select_from(_role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id))
        matrix: dict[str, set[str]] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(stmt):
                matrix.setdefault(row.role_id, set()).add(permission_key(row.module, row.action))
        return matrix

    # ------------------------------------------------------------------
    # Admin users
    # ------------------------------------------------------------------

    def create_admin_user(self, user: AdminUser) -> str:
        """Insert an admin user and return its ID.

        Raises IntegrityError if the auth_id is already linked, ValueError on
        an unknown status.
        """
        if user.status not in ADMIN_USER_STATUSES:
            raise ValueError(f"Unknown admin user status: {user.status!r}")
        user_id = user.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _admin_users.insert().values(
                    id=user_id,
                    auth_id=user.auth_id,
                    email=user.email,
                    full_name=user.full_name,
                    role_id=user.role_id,
                    clearance_level=user.clearance_level,
                    status=user.status,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_admin_user(self, auth_id: str) -> Optional[AdminUser]:
        with self.engine.connect() as conn:
            row = conn.execute(_admin_users.select().where(_admin_users.c.auth_id == auth_id)).fetchone()
        return _row_to_admin_user(row) if row is not None else None

    def list_admin_users(self) -> list[AdminUser]:
        with self.engine.connect() as conn:
            rows = conn.execute(_admin_users.select().order_by(_admin_users.c.email)).fetchall()
        return [_row_to_admin_user(r) for r in rows]

    def assign_role(self, auth_id: str, role_id: Optional[str]) -> bool:
        """Set (or clear, with None) a user's role. Returns False if the user is unknown.

        Callers must clear the permissions cache entry for auth_id afterwards;
        the store knows nothing about caching.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _admin_users.update().where(_admin_users.c.auth_id == auth_id).values(role_id=role_id)
            )
            conn.commit()
        return result.rowcount > 0

    def set_status(self, auth_id: str, status: str) -> bool:
        if status not in ADMIN_USER_STATUSES:
            raise ValueError(f"Unknown admin user status: {status!r}")
        with self.engine.connect() as conn:
            result = conn.execute(_admin_users.update().where(_admin_users.c.auth_id == auth_id).values(status=status))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_defaults(self) -> tuple[int, int]:
        """Insert the default system roles and the module x action permission catalogue.

        Idempotent: existing role codes and (module, action) pairs are left
        untouched. Returns (roles_created, permissions_created).
        """
        roles_created = 0
        for role in DEFAULT_ROLES:
            if self.get_role_by_code(role.code) is None:
                self.create_role(
                    Role(
                        name=role.name,
                        code=role.code,
                        level=role.level,
                        description=role.description,
                        is_system_role=role.is_system_role,
                    )
                )
                roles_created += 1

        perms_created = 0
        for module, (actions, sensitive) in MODULES.items():
            for action in actions:
                if self.get_permission_by_key(permission_key(module, action)) is None:
                    self.create_permission(Permission(module=module, action=action, is_sensitive=sensitive))
                    perms_created += 1
        return roles_created, perms_created

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        code=row.code,
        level=row.level,
        description=row.description or "",
        is_system_role=bool(row.is_system_role),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        module=row.module,
        action=row.action,
        name=row.name or "",
        is_sensitive=bool(row.is_sensitive),
        requires_mfa=bool(row.requires_mfa),
        created_at=row.created_at,
    )


def _row_to_admin_user(row) -> AdminUser:
    return AdminUser(
        id=row.id,
        auth_id=row.auth_id,
        email=row.email,
        full_name=row.full_name or "",
        role_id=row.role_id,
        clearance_level=row.clearance_level,
        status=row.status,
        created_at=row.created_at,
    )
