"""
Permission catalogue and matching rules

DEFAULT_ROLE_PERMISSIONS is the lookup table used to seed each role type's
default permission set. At runtime the database is authoritative; this
module only supplies the seed data and the pure matching helpers.
"""

from collections.abc import Iterable

from authz.config import settings
from authz.constants import PermissionEffect, RoleType

WILDCARD = "*"

# Role type -> {"allow": [...], "deny": [...]}
DEFAULT_ROLE_PERMISSIONS: dict[RoleType, dict[str, list[str]]] = {
    RoleType.SYSTEM_ADMIN: {"allow": [WILDCARD], "deny": []},
    RoleType.ADMIN: {"allow": [WILDCARD], "deny": []},
    RoleType.FAMILY_COORDINATOR: {
        "allow": [
            "read",
            "write",
            "family.*",
            "schedule.*",
            "task.*",
            "document.read",
            "document.write",
            "role.delegate",
            "admin.role.assign",
            "admin.role.revoke",
            "admin.delegation.approve",
            "admin.delegation.revoke",
        ],
        "deny": [],
    },
    RoleType.ADULT: {
        "allow": [
            "read",
            "write",
            "family.read",
            "schedule.*",
            "task.*",
            "document.*",
            "role.delegate",
        ],
        "deny": [],
    },
    RoleType.SENIOR: {
        "allow": ["read", "schedule.read", "task.read", "document.read", "emergency.request"],
        "deny": [],
    },
    RoleType.TEEN: {
        "allow": ["read", "schedule.read", "schedule.write", "task.read", "task.write", "document.read"],
        "deny": ["document.delete", "family.manage"],
    },
    RoleType.CHILD: {
        "allow": ["read", "schedule.read", "task.read"],
        "deny": ["document.*", "task.delete"],
    },
    RoleType.EMERGENCY_CONTACT: {
        "allow": ["read", "medical.read", "emergency.override", "admin.emergency.read"],
        "deny": [],
    },
}

# Actions pre-computed by cache warmup
COMMON_ACTIONS = ("read", "write", "schedule.read", "document.read")


def all_permission_names() -> list[str]:
    """Every distinct permission token named in the default table."""
    names: set[str] = set()
    for grants in DEFAULT_ROLE_PERMISSIONS.values():
        names.update(grants["allow"])
        names.update(grants["deny"])
    return sorted(names)


def permission_covers(pattern: str, action: str) -> bool:
    """
    Return True if a permission token covers *action*.

    "*" covers everything, "document.*" covers "document.read" and
    "document.share.link", anything else must match exactly.
    """
    if pattern == WILDCARD or pattern == action:
        return True
    if pattern.endswith(".*"):
        return action.startswith(pattern[:-1])
    return False


def evaluate_grants(grants: Iterable, action: str) -> PermissionEffect | None:
    """
    Resolve a collection of (name, effect) grants against *action*.

    An explicit deny beats any allow; None means no grant mentions it.
    """
    allowed = False
    for grant in grants:
        if not permission_covers(grant.name, action):
            continue
        if grant.effect == PermissionEffect.DENY:
            return PermissionEffect.DENY
        allowed = True
    return PermissionEffect.ALLOW if allowed else None


def action_class(action: str) -> str:
    """Classify an action as read, write, delete or admin for TTL purposes."""
    segments = action.split(".")
    if segments[0] == "admin":
        return "admin"
    if any(segment in ("delete", "remove", "revoke") for segment in segments):
        return "delete"
    if segments[-1] in ("read", "view", "list"):
        return "read"
    return "write"


def ttl_for_action(action: str) -> int:
    """Cache TTL hint in seconds for decisions about *action*."""
    return {
        "read": settings.ttl_read_seconds,
        "write": settings.ttl_write_seconds,
        "delete": settings.ttl_delete_seconds,
        "admin": settings.ttl_admin_seconds,
    }[action_class(action)]
