from .decision import AuthorizationDecision
from .events import InvalidationEvent, InvalidationEventType
from .records import DelegationRecord, OverrideRecord, PermissionGrant, RoleAssignmentRecord, RoleRecord
from .schedule import InvalidSchedule, RecurringSchedule
from .scope import FamilyScope, GlobalScope, IndividualScope, Scope, UnmatchableScope

__all__ = [
    "AuthorizationDecision",
    "DelegationRecord",
    "FamilyScope",
    "GlobalScope",
    "IndividualScope",
    "InvalidSchedule",
    "InvalidationEvent",
    "InvalidationEventType",
    "OverrideRecord",
    "PermissionGrant",
    "RecurringSchedule",
    "RoleAssignmentRecord",
    "RoleRecord",
    "Scope",
    "UnmatchableScope",
]
