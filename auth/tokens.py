"""
auth/tokens.py -- Session token and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the account's auth_id (as "sub"), email, and expiry. Nothing about
       role or permissions goes into the token -- those are resolved server
       side on every check so a role change never waits for a token to expire.
       Verification returns None on any failure -- route layer turns that
       into a 401 or a login redirect.

  Passwords: bcrypt directly. Bcrypt's cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       authenticate_account() so response time does not reveal whether an
       email exists.

  SECRET_KEY: sourced from core.config.get_settings(), validated at startup.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("brsadmin.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# sign-in attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("brsadmin_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(auth_id: str, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for an account.

    Args:
        auth_id:        The account's stable identifier, stored as "sub".
        email:          Display only; never used for lookups.
        expire_seconds: Session duration in seconds. 0 (default) uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": auth_id,
        "email": email,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("sub"), str) or not payload["sub"]:
        return None
    return payload


# ---------------------------------------------------------------------------
# Account authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_account(store: AccountStore, email: str, password: str) -> Account | None:
    """Authenticate an email/password sign-in with timing equalization.

    Always runs bcrypt whether or not the account exists, so an attacker
    cannot enumerate registered emails by measuring response time.

    Returns the Account on success, None on any failure.
    """
    account = store.get_by_email(email)
    if account is None or account.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.hashed_password):
        return None
    if not account.is_active:
        return None
    return account


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
