"""
Role and grant-state constants

Closed enumerations for the values stored in role, assignment, delegation
and override records, so comparisons never rely on loose strings.
"""

from enum import Enum


class RoleType(str, Enum):
    """Enumeration of role types in the system."""

    ADMIN = "admin"
    ADULT = "adult"
    TEEN = "teen"
    CHILD = "child"
    SENIOR = "senior"
    EMERGENCY_CONTACT = "emergency_contact"
    FAMILY_COORDINATOR = "family_coordinator"
    SYSTEM_ADMIN = "system_admin"


# Evaluation order within the role layer (higher first)
ROLE_PRIORITY = {
    RoleType.SYSTEM_ADMIN: 100,
    RoleType.ADMIN: 90,
    RoleType.EMERGENCY_CONTACT: 80,
    RoleType.FAMILY_COORDINATOR: 60,
    RoleType.ADULT: 50,
    RoleType.SENIOR: 40,
    RoleType.TEEN: 30,
    RoleType.CHILD: 20,
}

ADMIN_ROLE_TYPES = frozenset({RoleType.ADMIN, RoleType.SYSTEM_ADMIN})


class RoleState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AssignmentState(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class DelegationState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    REVOKED = "revoked"
    EXPIRED = "expired"


# Allowed source states for each delegation transition
DELEGATION_TRANSITIONS = {
    DelegationState.ACTIVE: frozenset({DelegationState.PENDING}),
    DelegationState.REJECTED: frozenset({DelegationState.PENDING}),
    DelegationState.REVOKED: frozenset({DelegationState.PENDING, DelegationState.ACTIVE}),
    DelegationState.EXPIRED: frozenset({DelegationState.PENDING, DelegationState.ACTIVE}),
}


class OverrideReason(str, Enum):
    NO_RESPONSE_24H = "no_response_24h"
    PANIC_BUTTON = "panic_button"
    ADMIN_OVERRIDE = "admin_override"
    MEDICAL_EMERGENCY = "medical_emergency"


class ScopeType(str, Enum):
    GLOBAL = "global"
    FAMILY = "family"
    INDIVIDUAL = "individual"


class PermissionEffect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class DecisionSource(str, Enum):
    """Which layer produced an authorization decision."""

    OVERRIDE = "override"
    DELEGATION = "delegation"
    ROLE = "role"
    DEFAULT_DENY = "default-deny"
