#!/usr/bin/env python3
"""
BRS Admin -- command-line administration for roles, permissions, and access.

Works directly against DATABASE_URL; the web service does not need to be
running. A running service keeps its own permissions cache, so changes made
here become visible there within PERMISSIONS_CACHE_TTL_SECONDS (or at once
after DELETE /api/v1/rbac/cache).

Usage:
  python main.py seed
  python main.py create-user admin@example.org --role super_admin
  python main.py grant district_admin export.view
  python main.py revoke district_admin export.view
  python main.py whoami admin@example.org
  python main.py check admin@example.org /admin/permissions
  python main.py whoami admin@example.org --format json

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the admin database (default: brsadmin.db).
  DEBUG         Set to true to run without a SECRET_KEY.
"""

import argparse
import getpass
import json
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password
from cache.store import PermissionCache
from core.access import ADMIN_PAGE_REQUIREMENTS, can_access_page, load_page_requirements
from core.config import get_settings
from rbac.models import AdminUser
from rbac.resolver import PermissionResolver, ResolutionStatus
from rbac.store import RBACStore


def _print(payload: dict, output_format: str, text: str) -> None:
    if output_format == "json":
        print(json.dumps(payload, indent=2))
    else:
        print(text)


def _fail(message: str, output_format: str) -> int:
    if output_format == "json":
        print(json.dumps({"error": message}))
    else:
        print(f"  [!] {message}", file=sys.stderr)
    return 1


def _find_auth_id(accounts: AccountStore, who: str) -> Optional[str]:
    """Accept either an email or an auth_id."""
    account = accounts.get_by_email(who) if "@" in who else accounts.get_by_auth_id(who)
    return account.auth_id if account else None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_seed(args, accounts: AccountStore, rbac: RBACStore) -> int:
    roles_created, perms_created = rbac.seed_defaults()
    _print(
        {"roles_created": roles_created, "permissions_created": perms_created},
        args.format,
        f"  Seeded {roles_created} role(s) and {perms_created} permission(s).",
    )
    return 0


def cmd_create_user(args, accounts: AccountStore, rbac: RBACStore) -> int:
    role = rbac.get_role_by_code(args.role)
    if role is None:
        return _fail(f"Unknown role code '{args.role}'. Run 'python main.py seed' first.", args.format)

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        return _fail("Password must be at least 8 characters.", args.format)

    try:
        auth_id = accounts.create_account(Account(email=args.email, hashed_password=hash_password(password)))
    except IntegrityError:
        return _fail(f"An account for {args.email} already exists.", args.format)
    rbac.create_admin_user(
        AdminUser(
            auth_id=auth_id,
            email=args.email.strip().lower(),
            full_name=args.full_name,
            role_id=role.id,
            clearance_level=role.level,
        )
    )
    _print(
        {"auth_id": auth_id, "email": args.email.strip().lower(), "role": role.code},
        args.format,
        f"  Created {args.email} ({auth_id}) with role {role.name}.",
    )
    return 0


def _grant_or_revoke(args, rbac: RBACStore, grant: bool) -> int:
    role = rbac.get_role_by_code(args.role)
    if role is None:
        return _fail(f"Unknown role code '{args.role}'.", args.format)
    permission = rbac.get_permission_by_key(args.permission)
    if permission is None:
        return _fail(f"Unknown permission '{args.permission}'. Expected module.action.", args.format)

    if grant:
        changed = rbac.grant_permission(role.id, permission.id)
        verb = "Granted" if changed else "Already granted"
    else:
        changed = rbac.revoke_permission(role.id, permission.id)
        verb = "Revoked" if changed else "Was not granted"
    _print(
        {"role": role.code, "permission": permission.key, "changed": changed},
        args.format,
        f"  {verb}: {permission.key} -> {role.code}",
    )
    return 0


def cmd_grant(args, accounts: AccountStore, rbac: RBACStore) -> int:
    return _grant_or_revoke(args, rbac, grant=True)


def cmd_revoke(args, accounts: AccountStore, rbac: RBACStore) -> int:
    return _grant_or_revoke(args, rbac, grant=False)


def _resolve(args, accounts: AccountStore, rbac: RBACStore):
    auth_id = _find_auth_id(accounts, args.user)
    resolver = PermissionResolver(rbac, PermissionCache(ttl=get_settings().permissions_cache_ttl_seconds))
    return auth_id, resolver.resolve(auth_id) if auth_id else None


def cmd_whoami(args, accounts: AccountStore, rbac: RBACStore) -> int:
    auth_id, result = _resolve(args, accounts, rbac)
    if auth_id is None:
        return _fail(f"No account for '{args.user}'.", args.format)
    if result.status is not ResolutionStatus.OK:
        _print(
            {"auth_id": auth_id, "resolution": result.status.value, "permissions": None},
            args.format,
            f"  {args.user}: unresolved ({result.status.value})",
        )
        return 2

    perms = result.permissions
    lines = [f"  {args.user}", f"  Role:  {perms.role_name} (level {perms.role_level})"]
    lines.extend(f"    {key}" for key in sorted(perms.permissions))
    _print(
        {
            "auth_id": auth_id,
            "resolution": result.status.value,
            "role_id": perms.role_id,
            "role_name": perms.role_name,
            "role_level": perms.role_level,
            "permissions": sorted(perms.permissions),
        },
        args.format,
        "\n".join(lines),
    )
    return 0


def cmd_check(args, accounts: AccountStore, rbac: RBACStore) -> int:
    """Exit 0 when allowed, 3 when denied, so scripts can branch on it."""
    auth_id, result = _resolve(args, accounts, rbac)
    if auth_id is None:
        return _fail(f"No account for '{args.user}'.", args.format)

    settings = get_settings()
    requirements = (
        load_page_requirements(settings.page_requirements_file)
        if settings.page_requirements_file
        else ADMIN_PAGE_REQUIREMENTS
    )
    allowed = can_access_page(result.permissions, args.path, requirements)
    _print(
        {"auth_id": auth_id, "path": args.path, "allowed": allowed, "resolution": result.status.value},
        args.format,
        f"  {args.path}: {'ALLOWED' if allowed else 'DENIED'} for {args.user}",
    )
    return 0 if allowed else 3


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brs-admin",
        description="Manage admin console roles and permissions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user ops@example.org --role district_admin --full-name "Ops Lead"
  python main.py grant district_admin export.view
  python main.py check ops@example.org /admin/exports --format json
        """,
    )
    # Shared options go on every subcommand so they can follow it on the line.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    common.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        metavar="FORMAT",
        help="Output format: text (default) or json",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("seed", parents=[common], help="Insert the default roles and permission catalogue (idempotent)")
    p.set_defaults(func=cmd_seed)

    p = sub.add_parser("create-user", parents=[common], help="Create a sign-in account bound to a role")
    p.add_argument("email")
    p.add_argument("--role", required=True, metavar="CODE", help="Role code, e.g. district_admin")
    p.add_argument("--password", default=None, help="Prompted for when omitted")
    p.add_argument("--full-name", default="", dest="full_name")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("grant", parents=[common], help="Grant module.action to a role")
    p.add_argument("role", metavar="ROLE_CODE")
    p.add_argument("permission", metavar="MODULE.ACTION")
    p.set_defaults(func=cmd_grant)

    p = sub.add_parser("revoke", parents=[common], help="Revoke module.action from a role")
    p.add_argument("role", metavar="ROLE_CODE")
    p.add_argument("permission", metavar="MODULE.ACTION")
    p.set_defaults(func=cmd_revoke)

    p = sub.add_parser("whoami", parents=[common], help="Print a user's resolved role and permissions")
    p.add_argument("user", metavar="EMAIL_OR_AUTH_ID")
    p.set_defaults(func=cmd_whoami)

    p = sub.add_parser("check", parents=[common], help="Decide whether a user may open an admin page")
    p.add_argument("user", metavar="EMAIL_OR_AUTH_ID")
    p.add_argument("path", metavar="PATH", help="e.g. /admin/exports")
    p.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    db_url = args.db or get_settings().database_url
    accounts = AccountStore(db_url)
    rbac = RBACStore(db_url)
    try:
        return args.func(args, accounts, rbac)
    finally:
        rbac.close()
        accounts.close()


if __name__ == "__main__":
    sys.exit(main())
