from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from authz.constants import OverrideReason, PermissionEffect, RoleType
from authz.schemas.schedule import RecurringSchedule
from authz.schemas.scope import Scope


class AuthorizeRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    resource_id: str = Field(..., min_length=1, max_length=64)
    resource_type: str = Field(..., min_length=1, max_length=50)


class AssignRoleRequest(BaseModel):
    user_id: UUID
    role_type: RoleType
    scopes: list[Scope] = Field(..., min_length=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    reason: str | None = Field(None, max_length=1000)
    recurring_schedule: RecurringSchedule | None = None

    @model_validator(mode="after")
    def validate_window(self) -> "AssignRoleRequest":
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CreateDelegationRequest(BaseModel):
    to_user_id: UUID
    role_id: UUID
    valid_from: datetime
    valid_until: datetime
    reason: str | None = Field(None, max_length=1000)
    scope: Scope
    permissions: list[str] | None = Field(None, min_length=1)
    requires_approval: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> "CreateDelegationRequest":
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class ActivateOverrideRequest(BaseModel):
    user_id: UUID
    reason: OverrideReason
    duration_minutes: int = Field(..., ge=1, le=1440)
    justification: str = Field(..., min_length=10, max_length=1000)
    granted_permissions: list[str] = Field(..., min_length=1)
    notify_users: list[UUID] = Field(default_factory=list)


class ReasonRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class PermissionGrantIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    effect: PermissionEffect = PermissionEffect.ALLOW


class UpdatePermissionSetRequest(BaseModel):
    permissions: list[PermissionGrantIn]


class CacheWarmupRequest(BaseModel):
    user_ids: list[UUID] = Field(..., min_length=1, max_length=1000)


class RecordIdResponse(BaseModel):
    id: UUID
