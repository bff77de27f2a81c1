from .roles import (
    ADMIN_ROLE_TYPES,
    DELEGATION_TRANSITIONS,
    ROLE_PRIORITY,
    AssignmentState,
    DecisionSource,
    DelegationState,
    OverrideReason,
    PermissionEffect,
    RoleState,
    RoleType,
    ScopeType,
)

__all__ = [
    "ADMIN_ROLE_TYPES",
    "DELEGATION_TRANSITIONS",
    "ROLE_PRIORITY",
    "AssignmentState",
    "DecisionSource",
    "DelegationState",
    "OverrideReason",
    "PermissionEffect",
    "RoleState",
    "RoleType",
    "ScopeType",
]
