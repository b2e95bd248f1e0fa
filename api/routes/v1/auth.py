"""
api/routes/v1/auth.py -- Sign-in and identity REST endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; sets JWT cookie
  POST /api/v1/auth/logout  -- clears cookie and cached permissions; 200
  GET  /api/v1/auth/me      -- current identity plus resolved permissions

Security:
  POST /login is rate-limited (LOGIN_RATE_LIMIT, default 10/minute per IP).
  authenticate_account() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse, PermissionsSummary
from auth.dependencies import get_current_identity, try_get_current_identity
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import authenticate_account, create_access_token, set_auth_cookie
from core.config import get_settings
from core.models import SUPER_ADMIN_LEVEL
from rbac.resolver import PermissionResolver

# Auth policy:
# - POST /api/v1/auth/login:   public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:  public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:      requires auth (get_current_identity)
router = APIRouter()

_settings = get_settings()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Returns the same generic error for an unknown email and a wrong password
    ("bad_credentials") to avoid leaking which emails are registered.
    """
    account_store: AccountStore = request.app.state.account_store
    account = authenticate_account(account_store, body.email, body.password)
    if account is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    account_store.update_last_login(account.auth_id)
    token = create_access_token(account.auth_id, account.email)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            auth_id=account.auth_id,
            email=account.email,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Clear the JWT cookie and drop the caller's cached permissions."""
    account = try_get_current_identity(request)
    if account is not None:
        request.app.state.resolver.clear_permissions_cache(account.auth_id)
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, account: Account = Depends(get_current_identity)) -> MeResponse:
    """Return the signed-in identity and whatever its permissions resolve to.

    Never fails on resolution: an unresolved identity gets permissions=null
    and the resolution status, so a client can show "no role assigned" or
    "try again" without a second call.
    """
    resolver: PermissionResolver = request.app.state.resolver
    result = resolver.resolve(account.auth_id)
    summary = None
    if result.permissions is not None:
        summary = PermissionsSummary.from_domain(result.permissions, SUPER_ADMIN_LEVEL)
    return MeResponse(
        auth_id=account.auth_id,
        email=account.email,
        last_login=account.last_login,
        resolution=result.status.value,
        permissions=summary,
    )
