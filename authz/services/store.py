"""
AuthorizationStore

Data access for role assignments, delegations, emergency overrides and
permission sets. No policy logic lives here, with one exception: every
read returns only records that are active and inside their validity window
at the instant passed in, so callers never re-derive time-window rules.

Every public call is bounded by a timeout. Timeouts surface as
StoreTimeoutError, driver failures as StoreUnavailableError; domain errors
(not found, state conflicts) pass through unchanged.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from functools import wraps
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authz.config import settings
from authz.constants import (
    DELEGATION_TRANSITIONS,
    AssignmentState,
    DelegationState,
    PermissionEffect,
    RoleState,
    RoleType,
)
from authz.exceptions import (
    AssignmentNotFoundError,
    AuditWriteError,
    DelegationNotFoundError,
    OverrideAlreadyActiveError,
    OverrideNotFoundError,
    PermissionSetNotFoundError,
    RoleNotFoundError,
    StateConflictError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationError,
)
from authz.models import (
    AuditLog,
    Delegation,
    EmergencyOverride,
    EmergencyOverrideGuard,
    FamilyMember,
    Permission,
    PermissionSet,
    Role,
    RoleAssignment,
    role_permission_sets,
)
from authz.schemas.records import (
    DelegationRecord,
    OverrideRecord,
    PermissionGrant,
    RoleAssignmentRecord,
    RoleRecord,
)
from authz.schemas.schedule import parse_schedule
from authz.schemas.scope import parse_scope, parse_scopes
from authz.utils.clock import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

# Permission-set inheritance chains longer than this are truncated
MAX_PERMISSION_SET_DEPTH = 16


def bounded(func):
    """Run a store call under the store timeout and translate driver errors."""

    @wraps(func)
    async def wrapper(self: "AuthorizationStore", *args, **kwargs):
        try:
            return await asyncio.wait_for(func(self, *args, **kwargs), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Store operation {func.__name__} timed out after {self._timeout}s")
            raise StoreTimeoutError(func.__name__, self._timeout) from e
        except IntegrityError as e:
            logger.warning(f"Store operation {func.__name__} violated a constraint: {e.orig}")
            raise ValidationError("Write violates a data constraint", details={"operation": func.__name__}) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Store operation {func.__name__} failed: {e}")
            raise StoreUnavailableError(func.__name__, str(e)) from e

    return wrapper


def _to_role_record(role: Role) -> RoleRecord:
    return RoleRecord(
        id=role.id,
        type=RoleType(role.type),
        name=role.name,
        state=role.state,
        priority=role.priority,
    )


def _to_delegation_record(delegation: Delegation) -> DelegationRecord:
    return DelegationRecord(
        id=delegation.id,
        from_user_id=delegation.from_user_id,
        to_user_id=delegation.to_user_id,
        role_id=delegation.role_id,
        scope=parse_scope(delegation.scope),
        permissions=tuple(delegation.permissions) if delegation.permissions is not None else None,
        state=delegation.state,
        valid_from=as_utc(delegation.valid_from),
        valid_until=as_utc(delegation.valid_until),
        requires_approval=delegation.requires_approval,
    )


def _to_override_record(override: EmergencyOverride) -> OverrideRecord:
    return OverrideRecord(
        id=override.id,
        triggered_by=override.triggered_by,
        user_id=override.user_id,
        reason=override.reason,
        granted_permissions=tuple(override.granted_permissions or ()),
        notified_users=tuple(UUID(str(u)) for u in override.notified_users or ()),
        activated_at=as_utc(override.activated_at),
        expires_at=as_utc(override.expires_at),
        deactivated_at=as_utc(override.deactivated_at),
    )


class AuthorizationStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.store_timeout_seconds

    def now(self) -> datetime:
        return self._clock()

    # ── Grant reads ──────────────────────────────────────────────────────────

    @bounded
    async def active_role_assignments_for(self, user_id: UUID, now: datetime) -> list[RoleAssignmentRecord]:
        """
        Assignments that grant access at *now*: state active, role active,
        valid_from <= now < valid_until, and inside the recurring schedule.

        Ordered by role priority (highest first), then assignment age.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(RoleAssignment, Role)
                .join(Role, Role.id == RoleAssignment.role_id)
                .where(
                    RoleAssignment.user_id == user_id,
                    RoleAssignment.state == AssignmentState.ACTIVE.value,
                    Role.state == RoleState.ACTIVE.value,
                    RoleAssignment.valid_from <= now,
                    or_(RoleAssignment.valid_until.is_(None), RoleAssignment.valid_until > now),
                )
                .order_by(Role.priority.desc(), RoleAssignment.assigned_at)
            )
            rows = result.all()

        records = []
        for assignment, role in rows:
            try:
                role_type = RoleType(role.type)
            except ValueError:
                logger.warning(f"Skipping assignment {assignment.id}: unknown role type {role.type!r}")
                continue

            schedule = parse_schedule(assignment.recurring_schedule)
            if schedule is not None and not schedule.covers(now):
                continue

            records.append(
                RoleAssignmentRecord(
                    id=assignment.id,
                    user_id=assignment.user_id,
                    role_id=assignment.role_id,
                    role_type=role_type,
                    role_priority=role.priority,
                    scopes=parse_scopes(assignment.scopes),
                    state=assignment.state,
                    valid_from=as_utc(assignment.valid_from),
                    valid_until=as_utc(assignment.valid_until),
                    schedule=schedule,
                )
            )
        return records

    @bounded
    async def active_delegations_to(self, user_id: UUID, now: datetime) -> list[DelegationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Delegation)
                .join(Role, Role.id == Delegation.role_id)
                .where(
                    Delegation.to_user_id == user_id,
                    Delegation.state == DelegationState.ACTIVE.value,
                    Role.state == RoleState.ACTIVE.value,
                    Delegation.valid_from <= now,
                    Delegation.valid_until > now,
                )
                .order_by(Role.priority.desc(), Delegation.created_at)
            )
            return [_to_delegation_record(d) for d in result.scalars().all()]

    @bounded
    async def active_override_for(self, user_id: UUID, now: datetime) -> OverrideRecord | None:
        async with self._session_factory() as session:
            override = await self._find_active_override(session, user_id, now)
            return _to_override_record(override) if override else None

    @bounded
    async def next_grant_change_for(self, user_id: UUID, now: datetime) -> datetime | None:
        """
        The earliest instant after *now* at which a decision for *user_id* can
        change without a write: an assignment or delegation starting or
        lapsing, a schedule window opening or closing, or the active override
        expiring. Delegators' own assignments count too, since a delegation
        grants nothing once its delegator stops holding the role.

        Returns None when nothing is due to change.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Delegation.from_user_id, Delegation.valid_from, Delegation.valid_until).where(
                    Delegation.to_user_id == user_id,
                    Delegation.state == DelegationState.ACTIVE.value,
                    Delegation.valid_until > now,
                )
            )
            candidates: list[datetime | None] = []
            holders = {user_id}
            for from_user_id, valid_from, valid_until in result.all():
                candidates += [as_utc(valid_from), as_utc(valid_until)]
                holders.add(from_user_id)

            result = await session.execute(
                select(
                    RoleAssignment.valid_from, RoleAssignment.valid_until, RoleAssignment.recurring_schedule
                ).where(
                    RoleAssignment.user_id.in_(holders),
                    RoleAssignment.state == AssignmentState.ACTIVE.value,
                    or_(RoleAssignment.valid_until.is_(None), RoleAssignment.valid_until > now),
                )
            )
            for valid_from, valid_until, raw_schedule in result.all():
                candidates += [as_utc(valid_from), as_utc(valid_until)]
                schedule = parse_schedule(raw_schedule)
                if schedule is not None:
                    candidates.append(schedule.next_change(now))

            override = await self._find_active_override(session, user_id, now)
            if override is not None:
                candidates.append(as_utc(override.expires_at))

        return min((c for c in candidates if c is not None and c > now), default=None)

    @bounded
    async def permissions_of(self, role_id: UUID) -> tuple[PermissionGrant, ...]:
        """Grants of every permission set on the role, expanded through parent sets."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(role_permission_sets.c.permission_set_id).where(role_permission_sets.c.role_id == role_id)
            )
            frontier = set(result.scalars().all())
            visited: set[UUID] = set()
            grants: set[PermissionGrant] = set()
            depth = 0

            while frontier:
                if depth >= MAX_PERMISSION_SET_DEPTH:
                    logger.warning(f"Permission set inheritance for role {role_id} truncated at depth {depth}")
                    break
                visited |= frontier
                result = await session.execute(select(PermissionSet).where(PermissionSet.id.in_(frontier)))
                next_frontier = set()
                for permission_set in result.scalars().all():
                    for permission in permission_set.permissions:
                        grants.add(PermissionGrant(name=permission.name, effect=PermissionEffect(permission.effect)))
                    if permission_set.parent_set_id and permission_set.parent_set_id not in visited:
                        next_frontier.add(permission_set.parent_set_id)
                frontier = next_frontier
                depth += 1

        return tuple(sorted(grants, key=lambda g: (g.name, g.effect.value)))

    @bounded
    async def family_ids_of(self, entity_id: UUID) -> frozenset[UUID]:
        """Families *entity_id* is currently a member of."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FamilyMember.family_id).where(
                    FamilyMember.user_id == entity_id,
                    FamilyMember.deleted_at.is_(None),
                )
            )
            return frozenset(result.scalars().all())

    # ── Lookups ──────────────────────────────────────────────────────────────

    @bounded
    async def get_role(self, role_id: UUID) -> RoleRecord | None:
        async with self._session_factory() as session:
            role = await session.get(Role, role_id)
            return _to_role_record(role) if role else None

    @bounded
    async def get_role_by_type(self, role_type: RoleType) -> RoleRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Role).where(Role.type == role_type.value))
            role = result.scalar_one_or_none()
            return _to_role_record(role) if role else None

    @bounded
    async def get_assignment_user(self, assignment_id: UUID) -> UUID | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RoleAssignment.user_id).where(RoleAssignment.id == assignment_id)
            )
            return result.scalar_one_or_none()

    @bounded
    async def get_delegation(self, delegation_id: UUID) -> DelegationRecord | None:
        async with self._session_factory() as session:
            delegation = await session.get(Delegation, delegation_id)
            return _to_delegation_record(delegation) if delegation else None

    @bounded
    async def get_override(self, override_id: UUID) -> OverrideRecord | None:
        async with self._session_factory() as session:
            override = await session.get(EmergencyOverride, override_id)
            return _to_override_record(override) if override else None

    @bounded
    async def delegatee_ids_of(self, user_id: UUID) -> set[UUID]:
        """Users holding a pending or active delegation from *user_id*."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Delegation.to_user_id).where(
                    Delegation.from_user_id == user_id,
                    Delegation.state.in_([DelegationState.PENDING.value, DelegationState.ACTIVE.value]),
                )
            )
            return set(result.scalars().all())

    @bounded
    async def users_with_permission_set(self, set_id: UUID) -> set[UUID]:
        """
        Every user whose decisions may depend on *set_id*: holders of a role
        carrying the set (or a set inheriting from it) and the delegatees of
        such roles.
        """
        async with self._session_factory() as session:
            set_ids = {set_id}
            frontier = {set_id}
            depth = 0
            while frontier and depth < MAX_PERMISSION_SET_DEPTH:
                result = await session.execute(
                    select(PermissionSet.id).where(PermissionSet.parent_set_id.in_(frontier))
                )
                frontier = set(result.scalars().all()) - set_ids
                set_ids |= frontier
                depth += 1

            result = await session.execute(
                select(role_permission_sets.c.role_id).where(
                    role_permission_sets.c.permission_set_id.in_(set_ids)
                )
            )
            role_ids = set(result.scalars().all())
            if not role_ids:
                return set()

            holders = await session.execute(
                select(RoleAssignment.user_id).where(
                    RoleAssignment.role_id.in_(role_ids),
                    RoleAssignment.state == AssignmentState.ACTIVE.value,
                )
            )
            delegatees = await session.execute(
                select(Delegation.to_user_id).where(
                    Delegation.role_id.in_(role_ids),
                    Delegation.state.in_([DelegationState.PENDING.value, DelegationState.ACTIVE.value]),
                )
            )
            return set(holders.scalars().all()) | set(delegatees.scalars().all())

    @bounded
    async def existing_permission_names(self, names: Iterable[str]) -> set[str]:
        names = set(names)
        if not names:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(select(Permission.name).where(Permission.name.in_(names)))
            return set(result.scalars().all())

    # ── Role assignment writes ───────────────────────────────────────────────

    @bounded
    async def create_assignment(
        self,
        *,
        user_id: UUID,
        role_id: UUID,
        granted_by: UUID | None,
        scopes: list[dict],
        valid_from: datetime,
        valid_until: datetime | None,
        reason: str | None = None,
        recurring_schedule: dict | None = None,
        audit: AuditLog | None = None,
    ) -> UUID:
        if valid_until is not None and valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from", field="valid_until")

        async with self._session_factory() as session, session.begin():
            if await session.get(Role, role_id) is None:
                raise RoleNotFoundError(role_id)

            assignment = RoleAssignment(
                id=uuid.uuid4(),
                user_id=user_id,
                role_id=role_id,
                granted_by=granted_by,
                reason=reason,
                scopes=scopes,
                recurring_schedule=recurring_schedule,
                state=AssignmentState.ACTIVE.value,
                assigned_at=self.now(),
                valid_from=valid_from,
                valid_until=valid_until,
            )
            session.add(assignment)
            await self._stage_audit(session, audit, assignment_id=assignment.id)

        logger.info(f"Role assignment created: id={assignment.id} user={user_id} role={role_id}")
        return assignment.id

    @bounded
    async def revoke_assignment(
        self,
        assignment_id: UUID,
        *,
        revoked_by: UUID | None,
        reason: str | None,
        now: datetime,
        audit: AuditLog | None = None,
    ) -> UUID:
        """Transition an active assignment to revoked. Returns the assignee's user id."""
        async with self._session_factory() as session, session.begin():
            assignment = await session.get(RoleAssignment, assignment_id)
            if assignment is None:
                raise AssignmentNotFoundError(assignment_id)

            result = await session.execute(
                update(RoleAssignment)
                .where(
                    RoleAssignment.id == assignment_id,
                    RoleAssignment.state == AssignmentState.ACTIVE.value,
                )
                .values(
                    state=AssignmentState.REVOKED.value,
                    revoked_at=now,
                    revoked_by=revoked_by,
                    revoke_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StateConflictError(
                    "RoleAssignment", assignment_id, assignment.state, AssignmentState.REVOKED.value
                )
            user_id = assignment.user_id
            await self._stage_audit(session, audit)

        logger.info(f"Role assignment revoked: id={assignment_id} user={user_id}")
        return user_id

    # ── Delegation writes ────────────────────────────────────────────────────

    @bounded
    async def create_delegation(
        self,
        *,
        from_user_id: UUID,
        to_user_id: UUID,
        role_id: UUID,
        scope: dict,
        valid_from: datetime,
        valid_until: datetime,
        reason: str | None = None,
        permissions: list[str] | None = None,
        requires_approval: bool = True,
        audit: AuditLog | None = None,
    ) -> UUID:
        if from_user_id == to_user_id:
            raise ValidationError("Users cannot delegate to themselves", field="to_user_id")
        if valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from", field="valid_until")

        state = DelegationState.PENDING if requires_approval else DelegationState.ACTIVE
        async with self._session_factory() as session, session.begin():
            if await session.get(Role, role_id) is None:
                raise RoleNotFoundError(role_id)

            delegation = Delegation(
                id=uuid.uuid4(),
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                role_id=role_id,
                reason=reason,
                scope=scope,
                permissions=permissions,
                requires_approval=requires_approval,
                state=state.value,
                valid_from=valid_from,
                valid_until=valid_until,
                created_at=self.now(),
            )
            session.add(delegation)
            await self._stage_audit(session, audit, delegation_id=delegation.id)

        logger.info(
            f"Delegation created: id={delegation.id} from={from_user_id} to={to_user_id} "
            f"role={role_id} state={state.value}"
        )
        return delegation.id

    @bounded
    async def set_delegation_state(
        self,
        delegation_id: UUID,
        target: DelegationState,
        *,
        actor_id: UUID | None,
        reason: str | None,
        now: datetime,
        audit: AuditLog | None = None,
    ) -> DelegationRecord:
        """
        Compare-and-set a delegation's state. Returns the record as it was
        before the transition.
        """
        allowed_from = DELEGATION_TRANSITIONS.get(target)
        if allowed_from is None:
            raise ValidationError(f"Delegations cannot transition to {target.value!r}", field="state")

        values: dict = {"state": target.value}
        if target in (DelegationState.ACTIVE, DelegationState.REJECTED):
            values.update(decided_by=actor_id, decided_at=now, decision_reason=reason)
        elif target == DelegationState.REVOKED:
            values.update(revoked_by=actor_id, revoked_at=now, revoke_reason=reason)

        async with self._session_factory() as session, session.begin():
            delegation = await session.get(Delegation, delegation_id)
            if delegation is None:
                raise DelegationNotFoundError(delegation_id)
            before = _to_delegation_record(delegation)

            result = await session.execute(
                update(Delegation)
                .where(
                    Delegation.id == delegation_id,
                    Delegation.state.in_([s.value for s in allowed_from]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StateConflictError("Delegation", delegation_id, delegation.state, target.value)
            await self._stage_audit(session, audit)

        logger.info(f"Delegation {delegation_id} transitioned {before.state} -> {target.value}")
        return before

    # ── Emergency override writes ────────────────────────────────────────────

    @bounded
    async def activate_override(
        self,
        *,
        triggered_by: UUID,
        user_id: UUID,
        reason: str,
        duration_minutes: int,
        granted_permissions: list[str],
        notified_users: list[UUID],
        justification: str,
        now: datetime,
        audit: AuditLog | None = None,
    ) -> UUID:
        """
        Start an override unless one is already active for *user_id*.

        The user's guard row is locked before the check, so a concurrent
        activation in another transaction waits for this one to commit and
        then sees its override.
        """
        if not 1 <= duration_minutes <= 1440:
            raise ValidationError("duration_minutes must be between 1 and 1440", field="duration_minutes")

        async with self._session_factory() as session, session.begin():
            await self._lock_override_guard(session, user_id, now)
            existing = await self._find_active_override(session, user_id, now)
            if existing is not None:
                raise OverrideAlreadyActiveError(user_id, existing.id)

            override = EmergencyOverride(
                id=uuid.uuid4(),
                triggered_by=triggered_by,
                user_id=user_id,
                reason=reason,
                duration_minutes=duration_minutes,
                granted_permissions=list(granted_permissions),
                notified_users=[str(u) for u in notified_users],
                justification=justification,
                activated_at=now,
                expires_at=now + timedelta(minutes=duration_minutes),
            )
            session.add(override)
            await self._stage_audit(session, audit, override_id=override.id)

        logger.warning(
            f"Emergency override activated: id={override.id} user={user_id} "
            f"by={triggered_by} reason={reason} minutes={duration_minutes}"
        )
        return override.id

    @bounded
    async def deactivate_override(
        self,
        override_id: UUID,
        *,
        deactivated_by: UUID | None,
        reason: str | None,
        now: datetime,
        audit: AuditLog | None = None,
    ) -> UUID:
        """End an active override early. Returns the affected user id."""
        async with self._session_factory() as session, session.begin():
            override = await session.get(EmergencyOverride, override_id)
            if override is None:
                raise OverrideNotFoundError(override_id)

            result = await session.execute(
                update(EmergencyOverride)
                .where(
                    EmergencyOverride.id == override_id,
                    EmergencyOverride.deactivated_at.is_(None),
                    EmergencyOverride.expires_at > now,
                )
                .values(deactivated_at=now, deactivated_by=deactivated_by, deactivation_reason=reason)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = "deactivated" if override.deactivated_at is not None else "expired"
                raise StateConflictError("EmergencyOverride", override_id, current, "deactivated")
            user_id = override.user_id
            await self._stage_audit(session, audit)

        logger.info(f"Emergency override deactivated: id={override_id} user={user_id}")
        return user_id

    # ── Permission set writes ────────────────────────────────────────────────

    @bounded
    async def update_permission_set(
        self, set_id: UUID, grants: list[PermissionGrant], audit: AuditLog | None = None
    ) -> None:
        """Replace the permissions of a set. Every grant must exist in the catalogue."""
        async with self._session_factory() as session, session.begin():
            permission_set = await session.get(PermissionSet, set_id)
            if permission_set is None:
                raise PermissionSetNotFoundError(set_id)

            wanted = {(g.name, g.effect.value) for g in grants}
            result = await session.execute(
                select(Permission).where(Permission.name.in_({name for name, _ in wanted}))
            )
            catalogue = {(p.name, p.effect): p for p in result.scalars().all()}
            unknown = sorted(f"{name}:{effect}" for name, effect in wanted if (name, effect) not in catalogue)
            if unknown:
                raise ValidationError("Unknown permissions", field="permissions", details={"unknown": unknown})

            permission_set.permissions = [catalogue[key] for key in sorted(wanted)]
            permission_set.updated_at = self.now()
            await self._stage_audit(session, audit)

        logger.info(f"Permission set {set_id} updated with {len(grants)} permissions")

    # ── Expiry ───────────────────────────────────────────────────────────────

    @bounded
    async def expire_stale_grants(self, now: datetime, audit: AuditLog | None = None) -> tuple[int, int]:
        """Move lapsed assignments and delegations to expired. Returns (assignments, delegations)."""
        async with self._session_factory() as session, session.begin():
            assignments = await session.execute(
                update(RoleAssignment)
                .where(
                    RoleAssignment.state == AssignmentState.ACTIVE.value,
                    RoleAssignment.valid_until.is_not(None),
                    RoleAssignment.valid_until <= now,
                )
                .values(state=AssignmentState.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            delegations = await session.execute(
                update(Delegation)
                .where(
                    Delegation.state.in_([DelegationState.PENDING.value, DelegationState.ACTIVE.value]),
                    Delegation.valid_until <= now,
                )
                .values(state=DelegationState.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            if assignments.rowcount or delegations.rowcount:
                if audit is not None:
                    audit.event_data = {"assignments": assignments.rowcount, "delegations": delegations.rowcount}
                await self._stage_audit(session, audit)
            return assignments.rowcount, delegations.rowcount

    # ── Private helpers ──────────────────────────────────────────────────────

    async def _find_active_override(
        self, session: AsyncSession, user_id: UUID, now: datetime
    ) -> EmergencyOverride | None:
        result = await session.execute(
            select(EmergencyOverride)
            .where(
                EmergencyOverride.user_id == user_id,
                EmergencyOverride.deactivated_at.is_(None),
                EmergencyOverride.activated_at <= now,
                EmergencyOverride.expires_at > now,
            )
            .order_by(EmergencyOverride.activated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _lock_override_guard(self, session: AsyncSession, user_id: UUID, now: datetime) -> None:
        """
        Take the per-user guard row lock for the rest of the transaction.

        The row is created on first use; the UPDATE then holds a row lock on
        PostgreSQL and the database write lock on SQLite.
        """
        if session.get_bind().dialect.name == "postgresql":
            insert = pg_insert(EmergencyOverrideGuard)
        else:
            insert = sqlite_insert(EmergencyOverrideGuard)
        await session.execute(insert.values(user_id=user_id).on_conflict_do_nothing(index_elements=["user_id"]))
        await session.execute(
            update(EmergencyOverrideGuard)
            .where(EmergencyOverrideGuard.user_id == user_id)
            .values(last_activated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def _stage_audit(self, session: AsyncSession, audit: AuditLog | None, **record_ids: UUID) -> None:
        """
        Insert *audit* in the caller's transaction after the change it
        records has been flushed. A failed insert raises AuditWriteError and
        the whole transaction rolls back.
        """
        if audit is None:
            return
        if record_ids:
            audit.event_data = {**(audit.event_data or {}), **{k: str(v) for k, v in record_ids.items()}}

        await session.flush()
        session.add(audit)
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Audit insert for {audit.event_type} failed; rolling back the change: {e}")
            raise AuditWriteError(audit.event_type, str(e)) from e
