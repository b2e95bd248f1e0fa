"""
api/main.py -- FastAPI application entry point for the admin access service.

Exposes identity, access checks and role administration over HTTP so the web
UI and external tools share one permission resolver and one cache.

Run with:  uvicorn asgi:app --reload

Middleware, in the order a request meets the registered classes:
  TrustedHostMiddleware  Host header must be a localhost name
  CORSMiddleware         browser origins allowed to call the API
  SlowAPIMiddleware      per-route limits declared with api.limiter

Lifespan handles startup (stores, cache, resolver, page table, purge task)
and shutdown (cancel purge task, close DB connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.access import router as access_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.rbac import router as rbac_router
from auth.dependencies import get_current_identity
from auth.models import Account
from auth.store import AccountStore
from cache.store import PermissionCache
from core.access import ADMIN_PAGE_REQUIREMENTS, load_page_requirements
from core.config import get_settings
from rbac.resolver import PermissionResolver
from rbac.store import RBACStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("brsadmin.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired permission cache entries every interval seconds.

    Expired entries are already ignored on read; this only bounds memory for
    users who never come back. CancelledError from task.cancel() during
    shutdown propagates out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        purged = app.state.cache.purge_expired()
        if purged:
            logger.info("Purged %d expired permission cache entries", purged)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open everything the routes read from app.state, and close it on shutdown.

    Startup order matters:
      1. Page table first -- a bad PAGE_REQUIREMENTS_FILE must stop startup
         before anything opens a database.
      2. Stores second -- both share DATABASE_URL.
      3. Cache and resolver -- the resolver reads through the RBAC store.
      4. Purge task last -- references app.state.cache, so cache must exist.
    """
    settings = get_settings()
    logger.info("Admin access service starting up")

    if settings.page_requirements_file:
        app.state.page_requirements = load_page_requirements(settings.page_requirements_file)
        logger.info(
            "Page requirements loaded from %s (%d pages)",
            settings.page_requirements_file,
            len(app.state.page_requirements),
        )
    else:
        app.state.page_requirements = ADMIN_PAGE_REQUIREMENTS

    app.state.account_store = AccountStore(settings.database_url)
    app.state.rbac_store = RBACStore(settings.database_url)
    app.state.setup_required = not app.state.account_store.has_accounts()
    logger.info("Stores initialized (setup_required=%s)", app.state.setup_required)

    app.state.cache = PermissionCache(ttl=settings.permissions_cache_ttl_seconds)
    app.state.resolver = PermissionResolver(app.state.rbac_store, app.state.cache)
    logger.info("Permission cache initialized (ttl=%ds)", settings.permissions_cache_ttl_seconds)

    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.cache_purge_interval_seconds))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.cache.invalidate_all()
    app.state.rbac_store.close()
    app.state.account_store.close()
    logger.info("Admin access service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BRS Admin Access API",
    description="Role-based access control for the registration system admin console.",
    version=__version__,
    lifespan=lifespan,
    # /docs and /redoc are re-registered below behind get_current_identity.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# slowapi reads the limiter from app.state.limiter.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Setup redirect middleware
#
# If no accounts exist yet, redirect every request to /setup so the first
# super admin can be created before any other page is accessible.
# /setup and /api/v1/health stay reachable, or the redirect would loop.
# ---------------------------------------------------------------------------

_SETUP_EXEMPT = frozenset({"/setup", "/api/v1/health"})


@app.middleware("http")
async def setup_redirect(request: Request, call_next):
    """Send every request to /setup until the first account exists.

    lifespan sets setup_required; POST /setup clears it after creating the
    account, and re-checks the database itself in case two requests race.
    """
    if getattr(request.app.state, "setup_required", False):
        if request.url.path not in _SETUP_EXEMPT:
            return RedirectResponse("/setup", status_code=302)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(access_router, prefix="/api/v1", tags=["Access"])
app.include_router(rbac_router, prefix="/api/v1", tags=["RBAC"])
# asgi.py mounts the web router; api/ never imports web/.


# ---------------------------------------------------------------------------
# API documentation (signed-in users only)
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(account: Account = Depends(get_current_identity)):
    """Swagger UI for signed-in users."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="BRS Admin Access API")


@app.get("/redoc", include_in_schema=False)
async def redoc(account: Account = Depends(get_current_identity)):
    """ReDoc for signed-in users."""
    return get_redoc_html(openapi_url="/openapi.json", title="BRS Admin Access API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the ErrorResponse envelope: {"error": {code, message, detail}}.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for a body or query string that fails model validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail. When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Return 503 when an admin route's store call fails.

    Permission resolution never reaches here (the resolver turns store errors
    into BACKEND_ERROR); this covers the listing and grant routes.
    """
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="database_unavailable",
                message="The database is unavailable. Try again.",
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 for anything no other handler claimed.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself rather than a router.
# No rate limit; monitors poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the RBAC database answers."""
    database = "ok"
    try:
        request.app.state.rbac_store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: RBAC database unavailable", exc_info=True)
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=__version__,
        database=database,
        cached_users=len(request.app.state.cache),
    )
