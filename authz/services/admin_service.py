"""
AdminService

Entry points for every mutation of authorization state. Each one follows
the same sequence:

  eligibility check -> store write with its audit row -> cache invalidation

The audit row is inserted in the same transaction as the change, so a
failed audit write leaves no change behind. Each method returns the id of
the created or updated record. Eligibility failures raise
PermissionDeniedError and leave a best-effort audit trail.
"""

import logging
from uuid import UUID

from authz.config import settings
from authz.constants import ADMIN_ROLE_TYPES, DelegationState, OverrideReason, PermissionEffect, RoleType
from authz.exceptions import (
    DelegationNotFoundError,
    OverrideNotFoundError,
    PermissionDeniedError,
    RoleNotFoundError,
    ValidationError,
)
from authz.schemas.events import InvalidationEvent, InvalidationEventType
from authz.schemas.records import PermissionGrant
from authz.schemas.requests import (
    ActivateOverrideRequest,
    AssignRoleRequest,
    CreateDelegationRequest,
    PermissionGrantIn,
)
from authz.schemas.scope import dump_scope
from authz.services.audit_service import (
    AuditCategory,
    AuditEventType,
    AuditPolicy,
    AuditService,
    AuditSeverity,
)
from authz.services.authorization_service import AuthorizationService, restrict_to_subset
from authz.services.invalidation_service import InvalidationService
from authz.services.scope_matcher import ScopeMatcher
from authz.services.store import AuthorizationStore

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(
        self,
        store: AuthorizationStore,
        authorization: AuthorizationService,
        invalidation: InvalidationService,
        audit: AuditService,
    ) -> None:
        self._store = store
        self._authorization = authorization
        self._invalidation = invalidation
        self._audit = audit

    # ── Role assignments ─────────────────────────────────────────────────────

    async def assign_role(self, actor_id: UUID, request: AssignRoleRequest) -> UUID:
        await self._require(actor_id, "admin.role.assign", request.user_id, "user", target_user_id=request.user_id)

        role = await self._store.get_role_by_type(request.role_type)
        if role is None:
            raise RoleNotFoundError(request.role_type.value)

        scopes = [dump_scope(scope) for scope in request.scopes]
        audit = self._audit.entry(
            AuditEventType.ROLE_ASSIGNED,
            AuditCategory.ROLE_MANAGEMENT,
            f"Role {role.type.value} assigned to {request.user_id}",
            actor_user_id=actor_id,
            target_user_id=request.user_id,
            event_data={
                "role_id": str(role.id),
                "role_type": role.type.value,
                "scopes": scopes,
                "valid_until": request.valid_until.isoformat() if request.valid_until else None,
                "reason": request.reason,
            },
            severity=AuditSeverity.MEDIUM,
        )
        assignment_id = await self._store.create_assignment(
            user_id=request.user_id,
            role_id=role.id,
            granted_by=actor_id,
            scopes=scopes,
            valid_from=request.valid_from or self._store.now(),
            valid_until=request.valid_until,
            reason=request.reason,
            recurring_schedule=(
                request.recurring_schedule.model_dump(mode="json") if request.recurring_schedule else None
            ),
            audit=audit,
        )
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.ROLE_ASSIGNED, user_id=request.user_id)
        )
        return assignment_id

    async def revoke_role(self, actor_id: UUID, assignment_id: UUID, reason: str | None = None) -> UUID:
        user_id = await self._store.get_assignment_user(assignment_id)
        if user_id is not None:
            await self._require(actor_id, "admin.role.revoke", user_id, "user", target_user_id=user_id)

        audit = self._audit.entry(
            AuditEventType.ROLE_REVOKED,
            AuditCategory.ROLE_MANAGEMENT,
            f"Role assignment {assignment_id} revoked",
            actor_user_id=actor_id,
            target_user_id=user_id,
            event_data={"assignment_id": str(assignment_id), "reason": reason},
            severity=AuditSeverity.MEDIUM,
        )
        # Missing assignments surface as AssignmentNotFoundError from the store
        user_id = await self._store.revoke_assignment(
            assignment_id, revoked_by=actor_id, reason=reason, now=self._store.now(), audit=audit
        )
        await self._invalidation.invalidate(InvalidationEvent(type=InvalidationEventType.ROLE_REVOKED, user_id=user_id))
        return assignment_id

    # ── Delegations ──────────────────────────────────────────────────────────

    async def create_delegation(self, actor_id: UUID, request: CreateDelegationRequest) -> UUID:
        """
        The actor delegates one of their own roles, in a scope no wider than
        they hold it. The actor also needs role.delegate over the recipient.
        """
        if request.to_user_id == actor_id:
            raise ValidationError("Users cannot delegate to themselves", field="to_user_id")

        await self._require(
            actor_id, "role.delegate", request.to_user_id, "user", target_user_id=request.to_user_id
        )

        role = await self._store.get_role(request.role_id)
        if role is None:
            raise RoleNotFoundError(request.role_id)

        now = self._store.now()
        matcher = ScopeMatcher(self._store)
        holds_scope = False
        for assignment in await self._store.active_role_assignments_for(actor_id, now):
            if assignment.role_id != request.role_id:
                continue
            for scope in assignment.scopes:
                if await matcher.covers(scope, request.scope):
                    holds_scope = True
                    break
            if holds_scope:
                break
        if not holds_scope:
            await self._deny_audit(actor_id, "create_delegation", request.to_user_id, "delegator does not hold the role")
            raise PermissionDeniedError(
                "You can only delegate roles you hold, in a scope no broader than your own",
                required_permission="role.delegate",
            )

        if request.permissions is not None:
            grants = await self._store.permissions_of(request.role_id)
            narrowed = restrict_to_subset(grants, request.permissions)
            allowed = {g.name for g in narrowed if g.effect == PermissionEffect.ALLOW}
            outside = sorted(set(request.permissions) - allowed)
            if outside:
                raise ValidationError(
                    "Delegated permissions must be granted by the role",
                    field="permissions",
                    details={"not_in_role": outside},
                )

        audit = self._audit.entry(
            AuditEventType.DELEGATION_CREATED,
            AuditCategory.DELEGATION,
            f"Role {role.type.value} delegated to {request.to_user_id}",
            actor_user_id=actor_id,
            target_user_id=request.to_user_id,
            event_data={
                "role_id": str(request.role_id),
                "scope": dump_scope(request.scope),
                "permissions": request.permissions,
                "valid_from": request.valid_from.isoformat(),
                "valid_until": request.valid_until.isoformat(),
                "requires_approval": request.requires_approval,
            },
            severity=AuditSeverity.MEDIUM,
        )
        delegation_id = await self._store.create_delegation(
            from_user_id=actor_id,
            to_user_id=request.to_user_id,
            role_id=request.role_id,
            scope=dump_scope(request.scope),
            valid_from=request.valid_from,
            valid_until=request.valid_until,
            reason=request.reason,
            permissions=request.permissions,
            requires_approval=request.requires_approval,
            audit=audit,
        )
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.DELEGATION_CREATED, user_id=request.to_user_id)
        )
        return delegation_id

    async def approve_delegation(self, actor_id: UUID, delegation_id: UUID, reason: str | None = None) -> UUID:
        return await self._decide_delegation(actor_id, delegation_id, DelegationState.ACTIVE, reason)

    async def reject_delegation(self, actor_id: UUID, delegation_id: UUID, reason: str | None = None) -> UUID:
        return await self._decide_delegation(actor_id, delegation_id, DelegationState.REJECTED, reason)

    async def revoke_delegation(self, actor_id: UUID, delegation_id: UUID, reason: str | None = None) -> UUID:
        delegation = await self._store.get_delegation(delegation_id)
        if delegation is None:
            raise DelegationNotFoundError(delegation_id)
        if actor_id not in (delegation.from_user_id, delegation.to_user_id):
            await self._require(
                actor_id, "admin.delegation.revoke", delegation.to_user_id, "user", target_user_id=delegation.to_user_id
            )

        audit = self._audit.entry(
            AuditEventType.DELEGATION_REVOKED,
            AuditCategory.DELEGATION,
            f"Delegation {delegation_id} revoked",
            actor_user_id=actor_id,
            target_user_id=delegation.to_user_id,
            event_data={"delegation_id": str(delegation_id), "reason": reason},
            severity=AuditSeverity.MEDIUM,
        )
        await self._store.set_delegation_state(
            delegation_id, DelegationState.REVOKED, actor_id=actor_id, reason=reason, now=self._store.now(), audit=audit
        )
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.DELEGATION_REVOKED, user_id=delegation.to_user_id)
        )
        return delegation_id

    async def _decide_delegation(
        self, actor_id: UUID, delegation_id: UUID, target: DelegationState, reason: str | None
    ) -> UUID:
        delegation = await self._store.get_delegation(delegation_id)
        if delegation is None:
            raise DelegationNotFoundError(delegation_id)
        await self._require(
            actor_id, "admin.delegation.approve", delegation.to_user_id, "user", target_user_id=delegation.to_user_id
        )

        approved = target == DelegationState.ACTIVE
        audit = self._audit.entry(
            AuditEventType.DELEGATION_APPROVED if approved else AuditEventType.DELEGATION_REJECTED,
            AuditCategory.DELEGATION,
            f"Delegation {delegation_id} {'approved' if approved else 'rejected'}",
            actor_user_id=actor_id,
            target_user_id=delegation.to_user_id,
            event_data={"delegation_id": str(delegation_id), "reason": reason},
            severity=AuditSeverity.MEDIUM,
        )
        await self._store.set_delegation_state(
            delegation_id, target, actor_id=actor_id, reason=reason, now=self._store.now(), audit=audit
        )
        await self._invalidation.invalidate(
            InvalidationEvent(
                type=(
                    InvalidationEventType.DELEGATION_APPROVED
                    if approved
                    else InvalidationEventType.DELEGATION_REJECTED
                ),
                user_id=delegation.to_user_id,
            )
        )
        return delegation_id

    # ── Emergency overrides ──────────────────────────────────────────────────

    async def activate_override(self, actor_id: UUID, request: ActivateOverrideRequest) -> UUID:
        await self._check_override_eligibility(actor_id, request)

        known = await self._store.existing_permission_names(request.granted_permissions)
        unknown = sorted(set(request.granted_permissions) - known)
        if unknown:
            raise ValidationError("Unknown permissions", field="granted_permissions", details={"unknown": unknown})

        if settings.override_requires_notification and actor_id != request.user_id and not request.notify_users:
            raise ValidationError(
                "At least one user must be notified when overriding access for someone else",
                field="notify_users",
            )

        audit = self._audit.entry(
            AuditEventType.EMERGENCY_OVERRIDE_ACTIVATED,
            AuditCategory.EMERGENCY,
            f"Emergency override activated for {request.user_id} ({request.reason.value})",
            actor_user_id=actor_id,
            target_user_id=request.user_id,
            event_data={
                "reason": request.reason.value,
                "duration_minutes": request.duration_minutes,
                "granted_permissions": request.granted_permissions,
                "notified_users": [str(u) for u in request.notify_users],
                "justification": request.justification,
            },
            severity=AuditSeverity.CRITICAL,
        )
        # At most one active override per user is enforced by the store
        override_id = await self._store.activate_override(
            triggered_by=actor_id,
            user_id=request.user_id,
            reason=request.reason.value,
            duration_minutes=request.duration_minutes,
            granted_permissions=request.granted_permissions,
            notified_users=request.notify_users,
            justification=request.justification,
            now=self._store.now(),
            audit=audit,
        )
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.EMERGENCY_OVERRIDE_ACTIVATED, user_id=request.user_id)
        )
        return override_id

    async def deactivate_override(self, actor_id: UUID, override_id: UUID, reason: str | None = None) -> UUID:
        override = await self._store.get_override(override_id)
        if override is None:
            raise OverrideNotFoundError(override_id)
        if actor_id not in (override.triggered_by, override.user_id):
            await self._require(
                actor_id, "admin.emergency.deactivate", override.user_id, "user", target_user_id=override.user_id
            )

        audit = self._audit.entry(
            AuditEventType.EMERGENCY_OVERRIDE_DEACTIVATED,
            AuditCategory.EMERGENCY,
            f"Emergency override {override_id} deactivated",
            actor_user_id=actor_id,
            target_user_id=override.user_id,
            event_data={"override_id": str(override_id), "reason": reason},
            severity=AuditSeverity.HIGH,
        )
        user_id = await self._store.deactivate_override(
            override_id, deactivated_by=actor_id, reason=reason, now=self._store.now(), audit=audit
        )
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.EMERGENCY_OVERRIDE_DEACTIVATED, user_id=user_id)
        )
        return override_id

    async def _check_override_eligibility(self, actor_id: UUID, request: ActivateOverrideRequest) -> None:
        """
        Admins may always trigger an override. Otherwise the reason decides:
        medical_emergency needs an emergency_contact role covering the
        affected user, panic_button may only be self-triggered.
        """
        assignments = await self._store.active_role_assignments_for(actor_id, self._store.now())
        if any(a.role_type in ADMIN_ROLE_TYPES for a in assignments):
            return

        if request.reason == OverrideReason.MEDICAL_EMERGENCY:
            matcher = ScopeMatcher(self._store)
            for assignment in assignments:
                if assignment.role_type != RoleType.EMERGENCY_CONTACT:
                    continue
                if await matcher.matches_any(assignment.scopes, "user", request.user_id):
                    return
            denial = "medical emergency overrides require an emergency contact role for this user"
        elif request.reason == OverrideReason.PANIC_BUTTON:
            if actor_id == request.user_id:
                return
            denial = "panic button overrides can only be triggered by the affected user"
        else:
            denial = f"{request.reason.value} overrides require an administrator"

        await self._deny_audit(actor_id, "activate_override", request.user_id, denial)
        raise PermissionDeniedError(
            "Not eligible to activate this emergency override",
            required_permission="emergency.override",
            reason=denial,
        )

    # ── Permission sets ──────────────────────────────────────────────────────

    async def update_permission_set(
        self, actor_id: UUID, set_id: UUID, permissions: list[PermissionGrantIn]
    ) -> UUID:
        await self._require(actor_id, "admin.permissions.manage", set_id, "permission_set")

        grants = [PermissionGrant(name=p.name, effect=p.effect) for p in permissions]
        audit = self._audit.entry(
            AuditEventType.PERMISSION_SET_UPDATED,
            AuditCategory.CONFIGURATION,
            f"Permission set {set_id} updated",
            actor_user_id=actor_id,
            event_data={
                "permission_set_id": str(set_id),
                "permissions": [{"name": g.name, "effect": g.effect.value} for g in grants],
            },
            severity=AuditSeverity.HIGH,
        )
        await self._store.update_permission_set(set_id, grants, audit=audit)
        await self._invalidation.invalidate(
            InvalidationEvent(type=InvalidationEventType.PERMISSION_SET_UPDATED, permission_set_id=set_id)
        )
        return set_id

    # ── Expiry sweep ─────────────────────────────────────────────────────────

    async def expire_stale_grants(self) -> tuple[int, int]:
        """Transition lapsed assignments and delegations to expired."""
        # The store fills in the counts and only writes the row when something expired
        audit = self._audit.entry(
            AuditEventType.GRANTS_EXPIRED,
            AuditCategory.ROLE_MANAGEMENT,
            "Lapsed role assignments and delegations expired",
        )
        assignments, delegations = await self._store.expire_stale_grants(self._store.now(), audit=audit)
        if assignments or delegations:
            logger.info(f"Expired {assignments} role assignments and {delegations} delegations")
            await self._invalidation.invalidate(InvalidationEvent(type=InvalidationEventType.GRANTS_EXPIRED))
        return assignments, delegations

    # ── Private helpers ──────────────────────────────────────────────────────

    async def _require(
        self,
        actor_id: UUID,
        action: str,
        resource_id: UUID,
        resource_type: str,
        target_user_id: UUID | None = None,
    ) -> None:
        decision = await self._authorization.authorize(actor_id, action, resource_id, resource_type)
        if not decision.allowed:
            await self._deny_audit(actor_id, action, target_user_id, decision.reason)
            raise PermissionDeniedError(required_permission=action, reason=decision.reason)

    async def _deny_audit(self, actor_id: UUID, operation: str, target_user_id: UUID | None, reason: str) -> None:
        logger.warning(f"Denied {operation} by {actor_id}: {reason}")
        await self._audit.log(
            AuditEventType.ADMIN_ACTION_DENIED,
            AuditCategory.AUTHORIZATION,
            f"{operation} denied: {reason}",
            policy=AuditPolicy.BEST_EFFORT,
            actor_user_id=actor_id,
            target_user_id=target_user_id,
            event_data={"operation": operation, "reason": reason},
            severity=AuditSeverity.MEDIUM,
            success=False,
        )
