"""
Emergency Override Routes

Break-glass activation and deactivation. Every call is audited with
critical severity, and activation is rate limited per client address.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from authz.auth import get_current_user_id
from authz.config import settings
from authz.dependencies import get_admin_service
from authz.middleware.rate_limit import limiter
from authz.schemas.requests import ActivateOverrideRequest, ReasonRequest, RecordIdResponse
from authz.services.admin_service import AdminService

router = APIRouter(prefix="/emergency", tags=["Emergency"])


@router.post("/override", response_model=RecordIdResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_emergency)
async def activate_override(
    request: Request,
    response: Response,
    data: ActivateOverrideRequest,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    """
    Activate an emergency override for a user.

    Fails with 409 if the user already has an active override.
    """
    override_id = await admin.activate_override(actor_id, data)
    return RecordIdResponse(id=override_id)


@router.post("/override/{override_id}/deactivate", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_emergency)
async def deactivate_override(
    request: Request,
    response: Response,
    override_id: UUID,
    data: ReasonRequest | None = None,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    deactivated = await admin.deactivate_override(actor_id, override_id, data.reason if data else None)
    return RecordIdResponse(id=deactivated)
