from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from authz.auth import get_current_user_id
from authz.config import settings
from authz.dependencies import get_admin_service
from authz.middleware.rate_limit import limiter
from authz.schemas.requests import AssignRoleRequest, ReasonRequest, RecordIdResponse
from authz.services.admin_service import AdminService

router = APIRouter(prefix="/roles", tags=["Roles"])


@router.post("/assign", response_model=RecordIdResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_admin)
async def assign_role(
    request: Request,
    response: Response,
    data: AssignRoleRequest,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    """
    Assign a role to a user within one or more scopes.
    """
    assignment_id = await admin.assign_role(actor_id, data)
    return RecordIdResponse(id=assignment_id)


@router.post("/assignments/{assignment_id}/revoke", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_admin)
async def revoke_role(
    request: Request,
    response: Response,
    assignment_id: UUID,
    data: ReasonRequest | None = None,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    revoked = await admin.revoke_role(actor_id, assignment_id, data.reason if data else None)
    return RecordIdResponse(id=revoked)
