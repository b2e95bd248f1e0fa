"""
api/routes/v1/access.py -- Access decision endpoint.

Routes:
  POST /api/v1/access/check  -- evaluate a page path and/or permission list
                                for the current identity

Clients that render their own navigation use this to hide entries the user
cannot open. The answer is advisory: every protected route still runs its
own check.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccessCheckRequest, AccessCheckResponse, CheckMode
from auth.dependencies import get_current_permissions
from core.access import can_access_page, has_all_permissions, has_any_permission
from core.models import UserPermissions

router = APIRouter()


@router.post("/access/check", response_model=AccessCheckResponse)
def check_access(
    request: Request,
    body: AccessCheckRequest,
    perms: UserPermissions = Depends(get_current_permissions),
) -> AccessCheckResponse:
    """Return the access decision for the supplied path and/or permissions.

    An omitted input is ignored: its decision field stays null and it takes no
    part in allowed, which is the AND of the decisions that were computed.
    """
    page_allowed = None
    if body.path is not None:
        page_allowed = can_access_page(perms, body.path, request.app.state.page_requirements)

    permissions_allowed = None
    if body.permissions is not None:
        decide = has_all_permissions if body.mode is CheckMode.all else has_any_permission
        permissions_allowed = decide(perms, body.permissions)

    decisions = [d for d in (page_allowed, permissions_allowed) if d is not None]
    return AccessCheckResponse(
        page_allowed=page_allowed,
        permissions_allowed=permissions_allowed,
        allowed=all(decisions),
        role_name=perms.role_name,
        role_level=perms.role_level,
    )
