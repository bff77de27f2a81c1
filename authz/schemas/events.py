from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class InvalidationEventType(str, Enum):
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REVOKED = "ROLE_REVOKED"
    DELEGATION_CREATED = "DELEGATION_CREATED"
    DELEGATION_APPROVED = "DELEGATION_APPROVED"
    DELEGATION_REJECTED = "DELEGATION_REJECTED"
    DELEGATION_REVOKED = "DELEGATION_REVOKED"
    PERMISSION_SET_UPDATED = "PERMISSION_SET_UPDATED"
    EMERGENCY_OVERRIDE_ACTIVATED = "EMERGENCY_OVERRIDE_ACTIVATED"
    EMERGENCY_OVERRIDE_DEACTIVATED = "EMERGENCY_OVERRIDE_DEACTIVATED"
    FAMILY_MEMBERSHIP_CHANGED = "FAMILY_MEMBERSHIP_CHANGED"
    GRANTS_EXPIRED = "GRANTS_EXPIRED"


class InvalidationEvent(BaseModel):
    """A committed mutation that may make cached decisions stale."""

    type: InvalidationEventType
    user_id: UUID | None = None
    user_ids: list[UUID] = Field(default_factory=list)
    permission_set_id: UUID | None = None
