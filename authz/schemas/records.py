"""
Immutable records returned by the store adapter

The store converts ORM rows into these before returning, so callers never
hold a live session object and never see unvalidated scope or schedule JSON.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from authz.constants import PermissionEffect, RoleType
from authz.schemas.schedule import InvalidSchedule, RecurringSchedule


@dataclass(frozen=True)
class PermissionGrant:
    name: str
    effect: PermissionEffect = PermissionEffect.ALLOW


@dataclass(frozen=True)
class RoleRecord:
    id: UUID
    type: RoleType
    name: str
    state: str
    priority: int


@dataclass(frozen=True)
class RoleAssignmentRecord:
    id: UUID
    user_id: UUID
    role_id: UUID
    role_type: RoleType
    role_priority: int
    scopes: tuple
    state: str
    valid_from: datetime
    valid_until: datetime | None
    schedule: RecurringSchedule | InvalidSchedule | None = None


@dataclass(frozen=True)
class DelegationRecord:
    id: UUID
    from_user_id: UUID
    to_user_id: UUID
    role_id: UUID
    scope: object
    permissions: tuple[str, ...] | None
    state: str
    valid_from: datetime
    valid_until: datetime
    requires_approval: bool = True


@dataclass(frozen=True)
class OverrideRecord:
    id: UUID
    triggered_by: UUID
    user_id: UUID
    reason: str
    granted_permissions: tuple[str, ...]
    notified_users: tuple[UUID, ...]
    activated_at: datetime
    expires_at: datetime
    deactivated_at: datetime | None = None
