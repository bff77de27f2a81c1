from .assignment import RoleAssignment
from .audit_log import AuditLog
from .delegation import Delegation
from .emergency_override import EmergencyOverride, EmergencyOverrideGuard
from .family import Family, FamilyMember
from .role import Permission, PermissionSet, Role, permission_set_permissions, role_permission_sets

__all__ = [
    "AuditLog",
    "Delegation",
    "EmergencyOverride",
    "EmergencyOverrideGuard",
    "Family",
    "FamilyMember",
    "Permission",
    "PermissionSet",
    "Role",
    "RoleAssignment",
    "permission_set_permissions",
    "role_permission_sets",
]
