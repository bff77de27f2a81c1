"""
Tests for AuthorizationStore against a SQLite database.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from authz.constants import AssignmentState, DelegationState, PermissionEffect, RoleState, RoleType
from authz.exceptions import (
    AssignmentNotFoundError,
    AuditWriteError,
    DelegationNotFoundError,
    OverrideAlreadyActiveError,
    PermissionSetNotFoundError,
    StateConflictError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationError,
)
from authz.models import (
    AuditLog,
    EmergencyOverride,
    EmergencyOverrideGuard,
    Permission,
    PermissionSet,
    Role,
    RoleAssignment,
)
from authz.schemas.records import PermissionGrant
from authz.schemas.scope import FamilyScope, GlobalScope, UnmatchableScope
from authz.services.store import AuthorizationStore

from utils.fixtures import add_family, delegate, family_scope, global_scope, grant_role, remove_member


async def activate(store, user_id, now, minutes=60, triggered_by=None):
    return await store.activate_override(
        triggered_by=triggered_by or user_id,
        user_id=user_id,
        reason="panic_button",
        duration_minutes=minutes,
        granted_permissions=["read"],
        notified_users=[],
        justification="Pressed the panic button",
        now=now,
    )


class TestRoleAssignments:
    """Tests for assignment reads and writes."""

    async def test_active_assignment_read_back(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        family_id = uuid.uuid4()
        assignment_id = await grant_role(container, role_ids, user_id, RoleType.ADULT, [family_scope(family_id)])

        records = await container.store.active_role_assignments_for(user_id, clock())

        assert len(records) == 1
        record = records[0]
        assert record.id == assignment_id
        assert record.role_type == RoleType.ADULT
        assert record.scopes == (FamilyScope(entity_ids=(family_id,)),)
        assert record.valid_from.tzinfo is not None

    async def test_ordered_by_role_priority(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        await grant_role(container, role_ids, user_id, RoleType.CHILD)
        await grant_role(container, role_ids, user_id, RoleType.FAMILY_COORDINATOR)
        await grant_role(container, role_ids, user_id, RoleType.ADULT)

        records = await container.store.active_role_assignments_for(user_id, clock())

        assert [r.role_type for r in records] == [RoleType.FAMILY_COORDINATOR, RoleType.ADULT, RoleType.CHILD]

    async def test_validity_window_is_half_open(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        start = clock() + timedelta(hours=1)
        end = start + timedelta(hours=2)
        await grant_role(container, role_ids, user_id, RoleType.ADULT, valid_from=start, valid_until=end)
        store = container.store

        assert await store.active_role_assignments_for(user_id, clock()) == []
        assert len(await store.active_role_assignments_for(user_id, start)) == 1
        assert len(await store.active_role_assignments_for(user_id, end - timedelta(microseconds=1))) == 1
        assert await store.active_role_assignments_for(user_id, end) == []

    async def test_inactive_role_excluded(self, container, role_ids, session_factory, clock):
        user_id = uuid.uuid4()
        await grant_role(container, role_ids, user_id, RoleType.TEEN)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(Role).where(Role.id == role_ids["teen"]).values(state=RoleState.INACTIVE.value)
            )

        assert await container.store.active_role_assignments_for(user_id, clock()) == []

    async def test_recurring_schedule_filters(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        await grant_role(
            container,
            role_ids,
            user_id,
            RoleType.ADULT,
            recurring_schedule={"days": [3], "time_start": "09:00", "time_end": "17:00", "timezone": "UTC"},
        )
        store = container.store

        # Wednesday 10:00 UTC
        assert len(await store.active_role_assignments_for(user_id, clock())) == 1
        assert await store.active_role_assignments_for(user_id, clock() + timedelta(hours=7)) == []
        assert await store.active_role_assignments_for(user_id, clock() + timedelta(days=1)) == []

    async def test_malformed_scope_kept_as_unmatchable(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        await grant_role(container, role_ids, user_id, RoleType.ADULT, [{"type": "family"}, global_scope()])

        records = await container.store.active_role_assignments_for(user_id, clock())

        assert isinstance(records[0].scopes[0], UnmatchableScope)
        assert isinstance(records[0].scopes[1], GlobalScope)

    async def test_revoke(self, container, role_ids, session_factory, clock):
        user_id = uuid.uuid4()
        actor_id = uuid.uuid4()
        assignment_id = await grant_role(container, role_ids, user_id, RoleType.ADULT)

        assert await container.store.revoke_assignment(
            assignment_id, revoked_by=actor_id, reason="moved out", now=clock()
        ) == user_id
        assert await container.store.active_role_assignments_for(user_id, clock()) == []

        async with session_factory() as session:
            assignment = await session.get(RoleAssignment, assignment_id)
        assert assignment.state == AssignmentState.REVOKED.value
        assert assignment.revoked_by == actor_id
        assert assignment.revoke_reason == "moved out"

    async def test_revoke_twice_conflicts(self, container, role_ids, clock):
        assignment_id = await grant_role(container, role_ids, uuid.uuid4(), RoleType.ADULT)
        await container.store.revoke_assignment(assignment_id, revoked_by=None, reason=None, now=clock())

        with pytest.raises(StateConflictError) as exc_info:
            await container.store.revoke_assignment(assignment_id, revoked_by=None, reason=None, now=clock())
        assert exc_info.value.details["current_state"] == "revoked"

    async def test_revoke_missing(self, container, clock):
        with pytest.raises(AssignmentNotFoundError):
            await container.store.revoke_assignment(uuid.uuid4(), revoked_by=None, reason=None, now=clock())

    async def test_rejects_inverted_window(self, container, role_ids, clock):
        with pytest.raises(ValidationError):
            await grant_role(
                container, role_ids, uuid.uuid4(), RoleType.ADULT, valid_from=clock(), valid_until=clock()
            )


class TestPermissionSets:
    """Tests for permission expansion and updates."""

    async def test_permissions_of_seeded_role(self, container, role_ids):
        grants = await container.store.permissions_of(role_ids["teen"])

        assert PermissionGrant("document.delete", PermissionEffect.DENY) in grants
        assert PermissionGrant("schedule.write") in grants

    async def test_inheritance_is_cycle_safe(self, container, role_ids, session_factory):
        async with session_factory() as session, session.begin():
            result = await session.execute(select(PermissionSet).where(PermissionSet.name == "child-defaults"))
            child_set = result.scalar_one()
            result = await session.execute(
                select(Permission).where(Permission.name == "medical.read", Permission.effect == "allow")
            )
            medical = result.scalar_one()
            parent = PermissionSet(id=uuid.uuid4(), name="medical", permissions=[medical])
            session.add(parent)
            await session.flush()
            child_set.parent_set_id = parent.id
            parent.parent_set_id = child_set.id

        grants = await container.store.permissions_of(role_ids["child"])

        assert PermissionGrant("medical.read") in grants
        assert PermissionGrant("task.read") in grants

    async def test_update_replaces_permissions(self, container, role_ids, session_factory):
        async with session_factory() as session:
            result = await session.execute(select(PermissionSet.id).where(PermissionSet.name == "senior-defaults"))
            set_id = result.scalar_one()

        await container.store.update_permission_set(set_id, [PermissionGrant("read"), PermissionGrant("task.write")])

        assert set(await container.store.permissions_of(role_ids["senior"])) == {
            PermissionGrant("read"),
            PermissionGrant("task.write"),
        }

    async def test_update_rejects_unknown_permission(self, container, session_factory):
        async with session_factory() as session:
            result = await session.execute(select(PermissionSet.id).where(PermissionSet.name == "senior-defaults"))
            set_id = result.scalar_one()

        with pytest.raises(ValidationError) as exc_info:
            await container.store.update_permission_set(set_id, [PermissionGrant("spaceship.launch")])
        assert exc_info.value.details["unknown"] == ["spaceship.launch:allow"]

    async def test_update_missing_set(self, container):
        with pytest.raises(PermissionSetNotFoundError):
            await container.store.update_permission_set(uuid.uuid4(), [])

    async def test_users_with_permission_set(self, container, role_ids, session_factory):
        holder, delegatee, bystander = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        await grant_role(container, role_ids, holder, RoleType.ADULT)
        await grant_role(container, role_ids, bystander, RoleType.CHILD)
        await delegate(container, role_ids, holder, delegatee, RoleType.ADULT, global_scope())

        async with session_factory() as session:
            result = await session.execute(select(PermissionSet.id).where(PermissionSet.name == "adult-defaults"))
            set_id = result.scalar_one()

        assert await container.store.users_with_permission_set(set_id) == {holder, delegatee}


class TestDelegations:
    """Tests for delegation reads and state transitions."""

    async def test_pending_not_active(self, container, role_ids, clock):
        to_user = uuid.uuid4()
        await delegate(container, role_ids, uuid.uuid4(), to_user, RoleType.ADULT, global_scope(), active=False)

        assert await container.store.active_delegations_to(to_user, clock()) == []

    async def test_approve_then_active(self, container, role_ids, clock):
        to_user = uuid.uuid4()
        delegation_id = await delegate(
            container, role_ids, uuid.uuid4(), to_user, RoleType.ADULT, global_scope(), active=False
        )

        before = await container.store.set_delegation_state(
            delegation_id, DelegationState.ACTIVE, actor_id=uuid.uuid4(), reason="ok", now=clock()
        )

        assert before.state == DelegationState.PENDING.value
        delegations = await container.store.active_delegations_to(to_user, clock())
        assert [d.id for d in delegations] == [delegation_id]

    async def test_active_cannot_be_rejected(self, container, role_ids, clock):
        delegation_id = await delegate(container, role_ids, uuid.uuid4(), uuid.uuid4(), RoleType.ADULT, global_scope())

        with pytest.raises(StateConflictError):
            await container.store.set_delegation_state(
                delegation_id, DelegationState.REJECTED, actor_id=None, reason=None, now=clock()
            )

    async def test_revoke_once(self, container, role_ids, clock):
        to_user = uuid.uuid4()
        delegation_id = await delegate(container, role_ids, uuid.uuid4(), to_user, RoleType.ADULT, global_scope())
        store = container.store

        await store.set_delegation_state(delegation_id, DelegationState.REVOKED, actor_id=None, reason=None, now=clock())
        assert await store.active_delegations_to(to_user, clock()) == []

        with pytest.raises(StateConflictError):
            await store.set_delegation_state(
                delegation_id, DelegationState.REVOKED, actor_id=None, reason=None, now=clock()
            )

    async def test_cannot_transition_to_pending(self, container, role_ids, clock):
        delegation_id = await delegate(container, role_ids, uuid.uuid4(), uuid.uuid4(), RoleType.ADULT, global_scope())

        with pytest.raises(ValidationError):
            await container.store.set_delegation_state(
                delegation_id, DelegationState.PENDING, actor_id=None, reason=None, now=clock()
            )

    async def test_missing_delegation(self, container, clock):
        with pytest.raises(DelegationNotFoundError):
            await container.store.set_delegation_state(
                uuid.uuid4(), DelegationState.REVOKED, actor_id=None, reason=None, now=clock()
            )

    async def test_self_delegation_rejected(self, container, role_ids):
        user_id = uuid.uuid4()
        with pytest.raises(ValidationError):
            await delegate(container, role_ids, user_id, user_id, RoleType.ADULT, global_scope())

    async def test_window_end_excluded(self, container, role_ids, clock):
        to_user = uuid.uuid4()
        await delegate(container, role_ids, uuid.uuid4(), to_user, RoleType.ADULT, global_scope(), hours=1)

        assert len(await container.store.active_delegations_to(to_user, clock())) == 1
        assert await container.store.active_delegations_to(to_user, clock() + timedelta(hours=1)) == []

    async def test_delegatee_ids(self, container, role_ids):
        holder, a, b = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        await delegate(container, role_ids, holder, a, RoleType.ADULT, global_scope())
        await delegate(container, role_ids, holder, b, RoleType.ADULT, global_scope(), active=False)

        assert await container.store.delegatee_ids_of(holder) == {a, b}


class TestEmergencyOverrides:
    """Tests for override activation rules."""

    async def test_at_most_one_active(self, container, clock):
        user_id = uuid.uuid4()
        first = await activate(container.store, user_id, clock())

        with pytest.raises(OverrideAlreadyActiveError) as exc_info:
            await activate(container.store, user_id, clock())
        assert exc_info.value.details["active_override_id"] == str(first)

    async def test_expires(self, container, clock):
        user_id = uuid.uuid4()
        await activate(container.store, user_id, clock(), minutes=30)

        assert await container.store.active_override_for(user_id, clock() + timedelta(minutes=29)) is not None
        assert await container.store.active_override_for(user_id, clock() + timedelta(minutes=30)) is None
        await activate(container.store, user_id, clock() + timedelta(minutes=30))

    async def test_deactivate_once(self, container, clock):
        user_id = uuid.uuid4()
        override_id = await activate(container.store, user_id, clock())

        assert await container.store.deactivate_override(
            override_id, deactivated_by=user_id, reason="safe", now=clock()
        ) == user_id
        assert await container.store.active_override_for(user_id, clock()) is None

        with pytest.raises(StateConflictError) as exc_info:
            await container.store.deactivate_override(override_id, deactivated_by=user_id, reason=None, now=clock())
        assert exc_info.value.details["current_state"] == "deactivated"

    async def test_duration_bounds(self, container, clock):
        with pytest.raises(ValidationError):
            await activate(container.store, uuid.uuid4(), clock(), minutes=1441)

    async def test_record_fields(self, container, clock):
        user_id = uuid.uuid4()
        notified = uuid.uuid4()
        await container.store.activate_override(
            triggered_by=uuid.uuid4(),
            user_id=user_id,
            reason="admin_override",
            duration_minutes=60,
            granted_permissions=["medical.read"],
            notified_users=[notified],
            justification="Family asked for help",
            now=clock(),
        )

        record = await container.store.active_override_for(user_id, clock())
        assert record.granted_permissions == ("medical.read",)
        assert record.notified_users == (notified,)
        assert record.expires_at == clock() + timedelta(minutes=60)

    async def test_guard_row_per_user(self, container, session_factory, clock):
        user_id = uuid.uuid4()
        override_id = await activate(container.store, user_id, clock())
        await container.store.deactivate_override(override_id, deactivated_by=user_id, reason=None, now=clock())
        await activate(container.store, user_id, clock())

        async with session_factory() as session:
            guards = (await session.execute(select(EmergencyOverrideGuard))).scalars().all()
        assert [guard.user_id for guard in guards] == [user_id]
        assert guards[0].last_activated_at is not None

    async def test_concurrent_activations_single_winner(self, container, session_factory, clock):
        user_id = uuid.uuid4()

        results = await asyncio.gather(
            *(activate(container.store, user_id, clock()) for _ in range(4)), return_exceptions=True
        )

        assert len([r for r in results if isinstance(r, uuid.UUID)]) == 1
        assert len([r for r in results if isinstance(r, OverrideAlreadyActiveError)]) == 3
        async with session_factory() as session:
            rows = await session.execute(select(EmergencyOverride).where(EmergencyOverride.user_id == user_id))
            assert len(rows.scalars().all()) == 1


class TestNextGrantChange:
    """Tests for the earliest upcoming change to a user's grants."""

    async def test_nothing_scheduled(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        await grant_role(container, role_ids, user_id, RoleType.ADULT)

        assert await container.store.next_grant_change_for(user_id, clock()) is None

    async def test_future_valid_from_and_valid_until(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        now = clock()
        await grant_role(container, role_ids, user_id, RoleType.CHILD, valid_until=now + timedelta(hours=3))
        await grant_role(container, role_ids, user_id, RoleType.ADULT, valid_from=now + timedelta(hours=2))

        assert await container.store.next_grant_change_for(user_id, now) == now + timedelta(hours=2)

    async def test_schedule_edge(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        await grant_role(
            container,
            role_ids,
            user_id,
            RoleType.ADULT,
            recurring_schedule={"days": [3], "time_start": "09:00", "time_end": "17:00", "timezone": "UTC"},
        )

        assert await container.store.next_grant_change_for(user_id, clock()) == datetime(
            2026, 3, 4, 17, 0, tzinfo=timezone.utc
        )

    async def test_delegation_and_delegator_assignment(self, container, role_ids, clock):
        holder, helper = uuid.uuid4(), uuid.uuid4()
        now = clock()
        await grant_role(container, role_ids, holder, RoleType.ADULT, valid_until=now + timedelta(hours=5))
        await delegate(container, role_ids, holder, helper, RoleType.ADULT, global_scope(), hours=8)

        assert await container.store.next_grant_change_for(helper, now) == now + timedelta(hours=5)

    async def test_override_expiry(self, container, clock):
        user_id = uuid.uuid4()
        now = clock()
        await activate(container.store, user_id, now, minutes=15)

        assert await container.store.next_grant_change_for(user_id, now) == now + timedelta(minutes=15)

    async def test_revoked_assignment_ignored(self, container, role_ids, clock):
        user_id = uuid.uuid4()
        now = clock()
        assignment_id = await grant_role(
            container, role_ids, user_id, RoleType.ADULT, valid_until=now + timedelta(hours=1)
        )
        await container.store.revoke_assignment(assignment_id, revoked_by=None, reason=None, now=now)

        assert await container.store.next_grant_change_for(user_id, now) is None


class TestFamilies:
    """Tests for membership lookups."""

    async def test_family_ids_of(self, container, session_factory, clock):
        user_id = uuid.uuid4()
        f1 = await add_family(session_factory, user_id)
        f2 = await add_family(session_factory, user_id)

        assert await container.store.family_ids_of(user_id) == frozenset({f1, f2})

        await remove_member(session_factory, f2, user_id, clock())
        assert await container.store.family_ids_of(user_id) == frozenset({f1})


class TestExpiry:
    """Tests for the expiry sweep at the store level."""

    async def test_expire_stale_grants(self, container, role_ids, session_factory, clock):
        user_id = uuid.uuid4()
        lapsing = await grant_role(
            container, role_ids, user_id, RoleType.ADULT, valid_until=clock() + timedelta(hours=1)
        )
        await grant_role(container, role_ids, user_id, RoleType.TEEN)
        await delegate(container, role_ids, uuid.uuid4(), user_id, RoleType.ADULT, global_scope(), hours=1)

        assert await container.store.expire_stale_grants(clock()) == (0, 0)
        assert await container.store.expire_stale_grants(clock() + timedelta(hours=1)) == (1, 1)

        async with session_factory() as session:
            assignment = await session.get(RoleAssignment, lapsing)
        assert assignment.state == AssignmentState.EXPIRED.value


class TestAuditInTransaction:
    """Tests for audit rows written inside store transactions."""

    @staticmethod
    def audit_row(event_type="role_assigned", category="role_management"):
        return AuditLog(event_type=event_type, category=category, description="Recorded by the store")

    @staticmethod
    async def audit_rows(session_factory, event_type):
        async with session_factory() as session:
            result = await session.execute(select(AuditLog).where(AuditLog.event_type == event_type))
            return result.scalars().all()

    async def test_commits_with_change(self, container, role_ids, session_factory, clock):
        user_id = uuid.uuid4()

        assignment_id = await grant_role(
            container, role_ids, user_id, RoleType.ADULT, audit=self.audit_row()
        )

        rows = await self.audit_rows(session_factory, "role_assigned")
        assert len(rows) == 1
        assert rows[0].event_data == {"assignment_id": str(assignment_id)}

    async def test_failed_insert_rolls_back_change(self, container, role_ids, session_factory, clock):
        user_id = uuid.uuid4()

        with pytest.raises(AuditWriteError):
            await grant_role(container, role_ids, user_id, RoleType.ADULT, audit=self.audit_row(category=None))

        assert await container.store.active_role_assignments_for(user_id, clock()) == []
        assert await self.audit_rows(session_factory, "role_assigned") == []

    async def test_failed_insert_keeps_override_slot_free(self, container, clock):
        user_id = uuid.uuid4()

        with pytest.raises(AuditWriteError):
            await container.store.activate_override(
                triggered_by=user_id,
                user_id=user_id,
                reason="panic_button",
                duration_minutes=30,
                granted_permissions=["read"],
                notified_users=[],
                justification="Pressed the panic button",
                now=clock(),
                audit=self.audit_row("emergency_override_activated", category=None),
            )

        assert await container.store.active_override_for(user_id, clock()) is None
        await activate(container.store, user_id, clock())

    async def test_conflict_writes_no_audit(self, container, role_ids, session_factory, clock):
        assignment_id = await grant_role(container, role_ids, uuid.uuid4(), RoleType.ADULT)
        await container.store.revoke_assignment(
            assignment_id, revoked_by=None, reason=None, now=clock(), audit=self.audit_row("role_revoked")
        )

        with pytest.raises(StateConflictError):
            await container.store.revoke_assignment(
                assignment_id, revoked_by=None, reason=None, now=clock(), audit=self.audit_row("role_revoked")
            )

        assert len(await self.audit_rows(session_factory, "role_revoked")) == 1

    async def test_sweep_audits_only_when_something_expired(self, container, role_ids, session_factory, clock):
        await grant_role(container, role_ids, uuid.uuid4(), RoleType.ADULT, valid_until=clock() + timedelta(hours=1))

        await container.store.expire_stale_grants(clock(), audit=self.audit_row("grants_expired"))
        assert await self.audit_rows(session_factory, "grants_expired") == []

        await container.store.expire_stale_grants(
            clock() + timedelta(hours=1), audit=self.audit_row("grants_expired")
        )
        rows = await self.audit_rows(session_factory, "grants_expired")
        assert rows[0].event_data == {"assignments": 1, "delegations": 0}


class TestStoreFailures:
    """Tests for timeout and driver error translation."""

    async def test_timeout(self):
        class SlowSession:
            async def __aenter__(self):
                await asyncio.sleep(1)
                return self

            async def __aexit__(self, *exc):
                return False

        store = AuthorizationStore(lambda: SlowSession(), timeout=0.01)

        with pytest.raises(StoreTimeoutError):
            await store.family_ids_of(uuid.uuid4())

    async def test_driver_failure(self):
        class BrokenSession:
            async def __aenter__(self):
                raise OSError("connection refused")

            async def __aexit__(self, *exc):
                return False

        store = AuthorizationStore(lambda: BrokenSession(), timeout=1)

        with pytest.raises(StoreUnavailableError):
            await store.active_override_for(uuid.uuid4(), datetime.now(timezone.utc))
