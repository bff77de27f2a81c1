"""
Delegation Routes

Create, approve, reject and revoke temporary role delegations.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from authz.auth import get_current_user_id
from authz.config import settings
from authz.dependencies import get_admin_service
from authz.middleware.rate_limit import limiter
from authz.schemas.requests import CreateDelegationRequest, ReasonRequest, RecordIdResponse
from authz.services.admin_service import AdminService

router = APIRouter(prefix="/delegations", tags=["Delegations"])


@router.post("", response_model=RecordIdResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_admin)
async def create_delegation(
    request: Request,
    response: Response,
    data: CreateDelegationRequest,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    """
    Delegate one of the caller's roles to another user.

    The delegation starts pending unless requires_approval is false.
    """
    delegation_id = await admin.create_delegation(actor_id, data)
    return RecordIdResponse(id=delegation_id)


@router.post("/{delegation_id}/approve", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_admin)
async def approve_delegation(
    request: Request,
    response: Response,
    delegation_id: UUID,
    data: ReasonRequest | None = None,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    approved = await admin.approve_delegation(actor_id, delegation_id, data.reason if data else None)
    return RecordIdResponse(id=approved)


@router.post("/{delegation_id}/reject", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_admin)
async def reject_delegation(
    request: Request,
    response: Response,
    delegation_id: UUID,
    data: ReasonRequest | None = None,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    rejected = await admin.reject_delegation(actor_id, delegation_id, data.reason if data else None)
    return RecordIdResponse(id=rejected)


@router.post("/{delegation_id}/revoke", response_model=RecordIdResponse)
@limiter.limit(settings.rate_limit_admin)
async def revoke_delegation(
    request: Request,
    response: Response,
    delegation_id: UUID,
    data: ReasonRequest | None = None,
    actor_id: UUID = Depends(get_current_user_id),
    admin: AdminService = Depends(get_admin_service),
):
    """
    Revoke a delegation. The delegator and delegatee may always revoke;
    anyone else needs admin.delegation.revoke.
    """
    revoked = await admin.revoke_delegation(actor_id, delegation_id, data.reason if data else None)
    return RecordIdResponse(id=revoked)
