"""
Tests for the permission catalogue and matching helpers.
"""

import pytest

from authz.constants import PermissionEffect, RoleType
from authz.permissions_config.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    action_class,
    all_permission_names,
    evaluate_grants,
    permission_covers,
    ttl_for_action,
)
from authz.schemas.records import PermissionGrant


class TestPermissionCovers:
    """Tests for wildcard and exact permission matching."""

    def test_exact_match(self):
        assert permission_covers("document.read", "document.read")

    def test_global_wildcard(self):
        assert permission_covers("*", "admin.role.assign")

    def test_prefix_wildcard(self):
        assert permission_covers("document.*", "document.read")
        assert permission_covers("document.*", "document.share.link")

    def test_prefix_wildcard_requires_segment_boundary(self):
        assert not permission_covers("document.*", "documents.read")
        assert not permission_covers("document.*", "document")

    def test_no_partial_match(self):
        assert not permission_covers("document.read", "document.readall")
        assert not permission_covers("read", "document.read")


class TestEvaluateGrants:
    """Tests for resolving a grant collection against one action."""

    def test_no_grant_mentions_action(self):
        grants = [PermissionGrant("task.read")]
        assert evaluate_grants(grants, "document.read") is None

    def test_allow(self):
        grants = [PermissionGrant("document.*")]
        assert evaluate_grants(grants, "document.read") == PermissionEffect.ALLOW

    def test_deny_beats_allow_regardless_of_order(self):
        allow = PermissionGrant("document.*")
        deny = PermissionGrant("document.delete", PermissionEffect.DENY)

        assert evaluate_grants([allow, deny], "document.delete") == PermissionEffect.DENY
        assert evaluate_grants([deny, allow], "document.delete") == PermissionEffect.DENY
        assert evaluate_grants([allow, deny], "document.read") == PermissionEffect.ALLOW


class TestActionClass:
    """Tests for TTL classification."""

    @pytest.mark.parametrize(
        "action,expected",
        [
            ("admin.role.assign", "admin"),
            ("admin.cache.read", "admin"),
            ("document.delete", "delete"),
            ("member.remove", "delete"),
            ("token.revoke", "delete"),
            ("document.read", "read"),
            ("read", "read"),
            ("schedule.view", "read"),
            ("task.list", "read"),
            ("document.write", "write"),
            ("emergency.override", "write"),
        ],
    )
    def test_classification(self, action, expected):
        assert action_class(action) == expected

    def test_ttl_ordering(self):
        """Riskier actions are cached for less time."""
        assert ttl_for_action("document.read") > ttl_for_action("document.write")
        assert ttl_for_action("document.write") > ttl_for_action("document.delete")
        assert ttl_for_action("document.delete") > ttl_for_action("admin.role.assign")

    def test_default_ttls(self):
        assert ttl_for_action("read") == 300
        assert ttl_for_action("write") == 60
        assert ttl_for_action("document.delete") == 30
        assert ttl_for_action("admin.role.assign") == 10


class TestDefaultRolePermissions:
    """Tests for the seed lookup table."""

    def test_every_role_type_has_defaults(self):
        assert set(DEFAULT_ROLE_PERMISSIONS) == set(RoleType)

    def test_admins_have_wildcard(self):
        assert DEFAULT_ROLE_PERMISSIONS[RoleType.ADMIN]["allow"] == ["*"]
        assert DEFAULT_ROLE_PERMISSIONS[RoleType.SYSTEM_ADMIN]["allow"] == ["*"]

    def test_child_cannot_touch_documents(self):
        grants = [PermissionGrant(name) for name in DEFAULT_ROLE_PERMISSIONS[RoleType.CHILD]["allow"]]
        grants += [
            PermissionGrant(name, PermissionEffect.DENY) for name in DEFAULT_ROLE_PERMISSIONS[RoleType.CHILD]["deny"]
        ]
        assert evaluate_grants(grants, "document.read") == PermissionEffect.DENY
        assert evaluate_grants(grants, "schedule.read") == PermissionEffect.ALLOW

    def test_all_permission_names_unique_and_sorted(self):
        names = all_permission_names()
        assert names == sorted(set(names))
        assert "admin.emergency.read" in names
        assert "document.*" in names
