"""
web/routes.py -- Jinja2 template routes for the admin console web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same account store, RBAC store, resolver) but return HTML instead of
JSON.

Every /admin page goes through AccessGuard before any content is rendered:
  REDIRECT -> 302 to /login?next=<page>
  DENIED   -> access denied panel, 403 (503 when the backend was unreachable)
  ALLOWED  -> the page

Route registration order matters. GET /admin/roles, /admin/permissions and
/admin/users must be registered before GET /admin/{section} or FastAPI
captures them as the generic section parameter.

Routes:
  GET  /                    -- redirect to /admin
  GET  /admin               -- dashboard: current role and permissions
  GET  /admin/roles         -- role list with grant counts
  GET  /admin/permissions   -- role x permission matrix
  GET  /admin/users         -- console users and their roles
  GET  /admin/{section}     -- remaining sections of the page table
  GET  /login               -- login form
  POST /login               -- handle password login
  POST /logout              -- clear cookie, redirect /login
  GET  /setup               -- first-run wizard
  POST /setup               -- create first super admin
"""

import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.dependencies import try_get_current_identity
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import authenticate_account, create_access_token, hash_password, set_auth_cookie
from core.access import can_access_page
from core.models import DEFAULT_LANDING_PATH, SUPER_ADMIN_LEVEL
from rbac.models import AdminUser
from rbac.store import RBACStore
from web.guard import AccessGuard, GuardDecision, GuardState, safe_path

logger = logging.getLogger("brsadmin.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()


def _signed_in_account(request: Request) -> Optional[Account]:
    """Current account for the page header, or None when the store is down."""
    try:
        return try_get_current_identity(request)
    except SQLAlchemyError:
        return None


# layout.html calls this to show the signed-in email without every handler
# passing it in the context.
templates.env.globals["signed_in_account"] = _signed_in_account

# Whitelist mapping for ?error= query params on /login.
# The raw query param is never passed to templates, only the message from
# this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "setup_complete": "Setup already complete. Please sign in.",
}

_SECTION_TITLES: dict[str, str] = {
    "/admin": "Dashboard",
    "/admin/users": "User Management",
    "/admin/roles": "Roles",
    "/admin/permissions": "Permission Matrix",
    "/admin/security": "Security",
    "/admin/sessions": "Active Sessions",
    "/admin/approvals": "Approvals",
    "/admin/exports": "Data Exports",
    "/admin/audit-logs": "Audit Logs",
    "/admin/wards": "Wards",
    "/admin/devices": "Devices",
    "/admin/config": "System Configuration",
}

_MIN_PASSWORD_LENGTH = 8


# ---------------------------------------------------------------------------
# Guard helpers
# ---------------------------------------------------------------------------


async def _guard_page(request: Request, path: str) -> Union[GuardDecision, HTMLResponse, RedirectResponse]:
    """Run the access guard for path.

    Returns the ALLOWED decision, or the response to send instead of the page.
    Call at the top of protected route handlers:
        decision = await _guard_page(request, "/admin/roles")
        if not isinstance(decision, GuardDecision):
            return decision

    Each HTTP request builds its own guard, so one request is one episode.
    An account store outage during the identity lookup is treated like a
    resolver outage: the retryable 503 panel, never a JSON error.
    """
    try:
        account = try_get_current_identity(request)
    except SQLAlchemyError:
        logger.exception("Identity lookup failed for %s", path)
        return _access_denied(
            request, GuardDecision(GuardState.DENIED, path, retryable=True, reason="backend_error")
        )
    guard = AccessGuard(request.app.state.resolver, request.app.state.page_requirements)
    decision = await guard.check(account.auth_id if account else None, path)

    if decision is not None and decision.state is GuardState.REDIRECT:
        return RedirectResponse(decision.redirect_to or "/login", status_code=302)
    if decision is None or decision.state is not GuardState.ALLOWED:
        return _access_denied(request, decision)
    return decision


def _access_denied(request: Request, decision: Optional[GuardDecision]) -> HTMLResponse:
    retryable = bool(decision and decision.retryable)
    return templates.TemplateResponse(
        request,
        "access_denied.html",
        {
            "role_name": decision.role_name if decision else None,
            "retryable": retryable,
            "retry_url": request.url.path,
            "landing_path": DEFAULT_LANDING_PATH,
        },
        status_code=503 if retryable else 403,
    )


def _page_context(decision: GuardDecision) -> dict:
    perms = decision.permissions
    return {
        "title": _SECTION_TITLES.get(decision.path, decision.path),
        "perms": perms,
        "is_super_admin": perms is not None and perms.role_level >= SUPER_ADMIN_LEVEL,
        "active_path": decision.path,
    }


# ---------------------------------------------------------------------------
# GET / -- landing redirect
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index() -> RedirectResponse:
    return RedirectResponse(DEFAULT_LANDING_PATH, status_code=302)


# ---------------------------------------------------------------------------
# GET /admin -- dashboard
# ---------------------------------------------------------------------------


@router.get("/admin", response_class=HTMLResponse)
async def admin_dashboard(request: Request):
    decision = await _guard_page(request, "/admin")
    if not isinstance(decision, GuardDecision):
        return decision
    requirements = request.app.state.page_requirements
    perms = decision.permissions
    sections = [
        {"path": path, "title": _SECTION_TITLES.get(path, path)}
        for path in requirements
        if path != "/admin" and can_access_page(perms, path, requirements)
    ]
    context = _page_context(decision)
    context["sections"] = sections
    context["permission_keys"] = sorted(perms.permissions) if perms else []
    return templates.TemplateResponse(request, "dashboard.html", context)


# ---------------------------------------------------------------------------
# GET /admin/roles -- role list (MUST precede /admin/{section})
# ---------------------------------------------------------------------------


@router.get("/admin/roles", response_class=HTMLResponse)
async def admin_roles(request: Request):
    decision = await _guard_page(request, "/admin/roles")
    if not isinstance(decision, GuardDecision):
        return decision
    rbac: RBACStore = request.app.state.rbac_store
    matrix = rbac.get_permission_matrix()
    rows = [{"role": role, "grant_count": len(matrix.get(role.id, ()))} for role in rbac.list_roles()]
    context = _page_context(decision)
    context["rows"] = rows
    return templates.TemplateResponse(request, "roles.html", context)


# ---------------------------------------------------------------------------
# GET /admin/permissions -- role x permission matrix
# ---------------------------------------------------------------------------


@router.get("/admin/permissions", response_class=HTMLResponse)
async def admin_permissions(request: Request):
    decision = await _guard_page(request, "/admin/permissions")
    if not isinstance(decision, GuardDecision):
        return decision
    rbac: RBACStore = request.app.state.rbac_store
    roles = rbac.list_roles()
    matrix = rbac.get_permission_matrix()

    modules: dict[str, list] = {}
    for perm in rbac.list_permissions():
        modules.setdefault(perm.module, []).append(perm)

    context = _page_context(decision)
    context.update({"roles": roles, "modules": modules, "matrix": matrix})
    return templates.TemplateResponse(request, "permissions.html", context)


# ---------------------------------------------------------------------------
# GET /admin/users -- console users
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_class=HTMLResponse)
async def admin_users(request: Request):
    decision = await _guard_page(request, "/admin/users")
    if not isinstance(decision, GuardDecision):
        return decision
    rbac: RBACStore = request.app.state.rbac_store
    role_names = {role.id: role.name for role in rbac.list_roles()}
    rows = [{"user": user, "role_name": role_names.get(user.role_id, "")} for user in rbac.list_admin_users()]
    context = _page_context(decision)
    context["rows"] = rows
    return templates.TemplateResponse(request, "users.html", context)


# ---------------------------------------------------------------------------
# GET /admin/{section} -- remaining sections (registered LAST under /admin/*)
# ---------------------------------------------------------------------------


@router.get("/admin/{section}", response_class=HTMLResponse)
async def admin_section(request: Request, section: str):
    path = f"/admin/{section}"
    decision = await _guard_page(request, path)
    if not isinstance(decision, GuardDecision):
        return decision
    if path not in request.app.state.page_requirements:
        raise HTTPException(status_code=404)
    requirement = request.app.state.page_requirements[path]
    context = _page_context(decision)
    context["requirement"] = requirement
    return templates.TemplateResponse(request, "section.html", context)


# ---------------------------------------------------------------------------
# Auth routes -- login, logout, setup
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request):
    """Render the sign-in form. Already signed-in users go straight to ?next."""
    next_url = request.query_params.get("next")
    if try_get_current_identity(request) is not None:
        return RedirectResponse(safe_path(next_url), status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next_url": safe_path(next_url) if next_url else None},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle email/password sign-in form submission."""
    account_store: AccountStore = request.app.state.account_store
    account = authenticate_account(account_store, email, password)
    next_url = request.query_params.get("next")
    if account is None:
        target = "/login?error=bad_credentials"
        if next_url:
            target = f"/login?error=bad_credentials&next={quote(safe_path(next_url), safe='/')}"
        return RedirectResponse(target, status_code=302)

    account_store.update_last_login(account.auth_id)
    token = create_access_token(account.auth_id, account.email)
    resp = RedirectResponse(safe_path(next_url), status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    logger.info("Signed in %s", account.auth_id)
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the JWT cookie and redirect to the login page.

    Cached permissions are dropped too so the next sign-in resolves fresh.
    """
    account = try_get_current_identity(request)
    if account is not None:
        request.app.state.resolver.clear_permissions_cache(account.auth_id)
    resp = RedirectResponse("/login", status_code=302)
    resp.delete_cookie("access_token")
    return resp


@router.get("/setup", response_class=HTMLResponse)
def setup_form(request: Request) -> HTMLResponse:
    """Render the first-run setup wizard. 404 once an account exists."""
    if not getattr(request.app.state, "setup_required", True):
        raise HTTPException(status_code=404)
    return templates.TemplateResponse(request, "setup.html", {})


@router.post("/setup", response_class=HTMLResponse)
def setup_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
    full_name: str = Form(default=""),
):
    """Create the first account and bind it to the super_admin role.

    Race condition guard: re-checks has_accounts() inside the handler even
    though the middleware already checked setup_required. Two concurrent
    requests could both pass the middleware check before either creates an
    account. The DB-level check and IntegrityError catch ensure only one wins.
    """
    account_store: AccountStore = request.app.state.account_store
    rbac: RBACStore = request.app.state.rbac_store

    if account_store.has_accounts():
        return RedirectResponse("/login?error=setup_complete", status_code=302)

    error_msg = None
    if not email.strip() or "@" not in email:
        error_msg = "A valid email is required."
    elif password != confirm_password:
        error_msg = "Passwords do not match."
    elif len(password) < _MIN_PASSWORD_LENGTH:
        error_msg = f"Password must be at least {_MIN_PASSWORD_LENGTH} characters."
    if error_msg:
        return templates.TemplateResponse(request, "setup.html", {"error_msg": error_msg})

    rbac.seed_defaults()
    super_admin = rbac.get_role_by_code("super_admin")

    try:
        auth_id = account_store.create_account(Account(email=email, hashed_password=hash_password(password)))
    except IntegrityError:
        return RedirectResponse("/login?error=setup_complete", status_code=302)

    rbac.create_admin_user(
        AdminUser(
            auth_id=auth_id,
            email=email.strip().lower(),
            full_name=full_name.strip(),
            role_id=super_admin.id if super_admin else None,
            clearance_level=SUPER_ADMIN_LEVEL,
        )
    )
    request.app.state.setup_required = False
    logger.info("First-run setup complete for %s", auth_id)
    return RedirectResponse("/login", status_code=302)
