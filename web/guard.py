"""
web/guard.py -- Access guard for protected admin pages.

State machine:

    CHECKING --(no identity)----------------------> REDIRECT
    CHECKING --(resolved, every gate passes)------> ALLOWED
    CHECKING --(resolved, any gate fails)---------> DENIED
    CHECKING --(unresolved / backend error / raise)-> DENIED

Every call to check() starts a new CHECKING episode. Identity or path
changes are simply new check() calls; ALLOWED and DENIED are never sticky.

Resolution runs in a worker thread (the store is synchronous), which is the
only suspension point. If another check() begins while one is suspended, the
older episode's result is discarded on arrival and check() returns None, so
a superseded response can never overwrite a newer decision. Exactly one
decision is committed per episode.

The discard only applies to a caller that holds one guard across
overlapping checks. The web routes build a fresh guard per HTTP request,
so there each request is exactly one episode and a later navigation is a
separate request with its own decision.

The guard fails closed: anything other than a successful resolution that
passes every gate ends in DENIED. A backend outage is DENIED with
retryable=True so the page can offer "Try again" instead of implying the
user lacks privileges.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from core.access import ADMIN_PAGE_REQUIREMENTS, can_access_page, has_any_permission, has_min_role_level
from core.models import LOGIN_PATH, PageRequirement, UserPermissions
from rbac.resolver import PermissionResolver, Resolution, ResolutionStatus

logger = logging.getLogger("brsadmin.guard")


class GuardState(str, enum.Enum):
    CHECKING = "checking"
    ALLOWED = "allowed"
    DENIED = "denied"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    path: str
    role_name: Optional[str] = None
    redirect_to: Optional[str] = None
    retryable: bool = False
    reason: str = ""
    permissions: Optional[UserPermissions] = None

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.ALLOWED


def safe_path(path: Optional[str]) -> str:
    """Return path if it is server-relative, else "/".

    Rejects absolute URLs and protocol-relative "//host" paths so the
    post-login redirect can never leave the site.
    """
    if path and path.startswith("/") and not path.startswith("//"):
        return path
    return "/"


def login_redirect(path: str) -> str:
    """Return the login URL that sends the user back to path after sign-in."""
    return f"{LOGIN_PATH}?next={quote(safe_path(path), safe='/-_.~')}"


def evaluate_access(
    resolution: Optional[Resolution],
    path: str,
    requirements: Mapping[str, PageRequirement] = ADMIN_PAGE_REQUIREMENTS,
    required_permissions: Optional[Sequence[str]] = None,
    min_role_level: Optional[int] = None,
) -> GuardDecision:
    """Turn a resolution into ALLOWED or DENIED for path. Pure; never raises.

    Gates, all of which must pass:
      - can_access_page(path)
      - any of required_permissions, when given (an empty list denies)
      - role level >= min_role_level, when given
    """
    if resolution is None:
        return GuardDecision(GuardState.DENIED, path, reason="error")
    if resolution.status is ResolutionStatus.BACKEND_ERROR:
        return GuardDecision(GuardState.DENIED, path, retryable=True, reason="backend_error")
    perms = resolution.permissions
    if perms is None:
        return GuardDecision(GuardState.DENIED, path, reason="unresolved")

    role_name = perms.role_name
    if not can_access_page(perms, path, requirements):
        return GuardDecision(GuardState.DENIED, path, role_name=role_name, reason="page")
    if required_permissions is not None and not has_any_permission(perms, required_permissions):
        return GuardDecision(GuardState.DENIED, path, role_name=role_name, reason="permissions")
    if min_role_level is not None and not has_min_role_level(perms, min_role_level):
        return GuardDecision(GuardState.DENIED, path, role_name=role_name, reason="role_level")
    return GuardDecision(GuardState.ALLOWED, path, role_name=role_name, permissions=perms)


class AccessGuard:
    """Blocks protected content until an access decision is committed.

    Usage:
        guard = AccessGuard(app.state.resolver)
        decision = await guard.check(account.auth_id, "/admin/exports")
        if decision is None:
            ...  # superseded by a newer check; ignore
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        requirements: Mapping[str, PageRequirement] = ADMIN_PAGE_REQUIREMENTS,
    ) -> None:
        self.resolver = resolver
        self.requirements = requirements
        self.state = GuardState.CHECKING
        self.decision: Optional[GuardDecision] = None
        self._generation = 0

    def _begin(self) -> int:
        self._generation += 1
        self.state = GuardState.CHECKING
        self.decision = None
        return self._generation

    def _commit(self, episode: int, decision: GuardDecision) -> Optional[GuardDecision]:
        if episode != self._generation:
            logger.debug("Discarding stale decision for %s", decision.path)
            return None
        self.state = decision.state
        self.decision = decision
        if decision.state is GuardState.DENIED:
            logger.info("Access denied to %s (%s)", decision.path, decision.reason)
        return decision

    async def check(
        self,
        identity: Optional[str],
        path: str,
        required_permissions: Optional[Sequence[str]] = None,
        min_role_level: Optional[int] = None,
    ) -> Optional[GuardDecision]:
        """Run one CHECKING episode for identity at path.

        Returns the committed decision, or None if a newer check() superseded
        this one while it was resolving.
        """
        episode = self._begin()
        if not identity:
            return self._commit(
                episode,
                GuardDecision(GuardState.REDIRECT, path, redirect_to=login_redirect(path), reason="unauthenticated"),
            )

        resolution: Optional[Resolution]
        try:
            resolution = await run_in_threadpool(self.resolver.resolve, identity)
        except Exception:
            logger.exception("Permission check failed for %s at %s", identity, path)
            resolution = None

        decision = evaluate_access(resolution, path, self.requirements, required_permissions, min_role_level)
        return self._commit(episode, decision)
