"""
Authorization Check Routes

Lets an authenticated caller ask whether they may perform an action on a
resource. Other services use this to gate their own endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from authz.auth import get_current_user_id
from authz.dependencies import get_authorization_service
from authz.schemas.decision import AuthorizationDecision
from authz.schemas.requests import AuthorizeRequest
from authz.services.authorization_service import AuthorizationService

router = APIRouter(tags=["Authorization"])


def security_context_of(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "path": request.url.path,
    }


@router.post("/authorize", response_model=AuthorizationDecision)
async def authorize(
    data: AuthorizeRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> AuthorizationDecision:
    """
    Evaluate a permission check for the calling user.

    Returns the decision with its source (override, delegation, role or
    default-deny). A denial is a normal 200 response; 503 means the
    decision could not be determined.
    """
    return await authorization.authorize(
        user_id,
        data.action,
        data.resource_id,
        data.resource_type,
        security_context=security_context_of(request),
    )
