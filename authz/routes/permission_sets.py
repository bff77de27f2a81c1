from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response

from authz.auth import get_current_user_id
from authz.config import settings
from authz.dependencies import get_admin_service
from authz.middleware.rate_limit import limiter
from authz.schemas.requests import RecordIdResponse, UpdatePermissionSetRequest
from authz.services.admin_service import AdminService

router = APIRouter(prefix="/permission-sets", tags=["Permission Sets"])


@router.put("/{set_id}", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_admin)
async def update_permission_set(
    request: Request,
    response: Response,
    set_id: UUID,
    data: UpdatePermissionSetRequest,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    """
    Replace the grants of a permission set. Cached decisions for every user
    holding a role that uses the set are invalidated.
    """
    updated = await admin.update_permission_set(actor_id, set_id, data.permissions)
    return RecordIdResponse(id=updated)
