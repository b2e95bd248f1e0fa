"""
auth/models.py -- Domain dataclass for sign-in identities.

Pattern: Data class (pure data container, zero logic). Mirrors rbac/models.py
-- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Account:
    """An identity that can sign in.

    auth_id is the stable external identifier carried in the session token
    and matched against admin_users.auth_id when permissions are resolved.
    Accounts say nothing about privilege -- an account with no admin_users
    row signs in fine but resolves to no permissions.
    """

    email: str
    auth_id: str | None = None  # assigned by the store on insert
    hashed_password: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None
