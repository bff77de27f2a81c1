"""
AuthorizationService

Answers "can user U perform action A on resource R" by evaluating, in
strict priority order:

  1. an active emergency override granting the action (scope not checked)
  2. active delegations to the user
  3. the user's own active role assignments
  4. default deny

A layer that reaches a verdict (allow or explicit deny) short-circuits the
layers below it. Within the delegation and role layers an explicit deny
beats an allow.

Decisions are cached per (user, action, resource type, resource) with a TTL
chosen by action class, cut short at the next instant one of the user's
grants starts, lapses or crosses a schedule edge. A cached decision read
back after that instant is recomputed. Store failures surface as
AuthorizationIndeterminateError and are never cached.
"""

import asyncio
import logging
import re
import time
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from authz.config import settings
from authz.constants import DecisionSource, PermissionEffect
from authz.exceptions import AuthorizationIndeterminateError, PermissionDeniedError, StoreError, ValidationError
from authz.permissions_config.permissions import (
    COMMON_ACTIONS,
    evaluate_grants,
    permission_covers,
    ttl_for_action,
)
from authz.schemas.decision import AuthorizationDecision
from authz.schemas.events import InvalidationEvent
from authz.schemas.records import DelegationRecord, PermissionGrant, RoleAssignmentRecord
from authz.services.audit_service import (
    AuditCategory,
    AuditEventType,
    AuditPolicy,
    AuditService,
    AuditSeverity,
)
from authz.services.cache_service import DecisionCache
from authz.services.invalidation_service import InvalidationService
from authz.services.scope_matcher import ScopeMatcher
from authz.services.store import AuthorizationStore
from authz.utils.metrics import record_decision, record_indeterminate

logger = logging.getLogger(__name__)

ACTION_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")
RESOURCE_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"{field} must be a UUID", field=field) from e


def restrict_to_subset(grants: Iterable[PermissionGrant], subset: Iterable[str]) -> tuple[PermissionGrant, ...]:
    """
    Narrow a role's grants to an explicit permission subset.

    Allows survive only for subset names the role itself allows; the role's
    denies always survive.
    """
    grants = tuple(grants)
    allows = [g for g in grants if g.effect == PermissionEffect.ALLOW]
    denies = [g for g in grants if g.effect == PermissionEffect.DENY]
    narrowed = [
        PermissionGrant(name=name)
        for name in subset
        if any(permission_covers(g.name, name) for g in allows)
    ]
    return tuple(narrowed + denies)


class _Evaluation:
    """Per-call memo of store lookups shared by the delegation and role layers."""

    def __init__(self, store: AuthorizationStore, now) -> None:
        self.store = store
        self.now = now
        self.matcher = ScopeMatcher(store)
        self._grants: dict[UUID, tuple[PermissionGrant, ...]] = {}
        self._assignments: dict[UUID, list[RoleAssignmentRecord]] = {}

    async def grants_of(self, role_id: UUID) -> tuple[PermissionGrant, ...]:
        if role_id not in self._grants:
            self._grants[role_id] = await self.store.permissions_of(role_id)
        return self._grants[role_id]

    async def assignments_of(self, user_id: UUID) -> list[RoleAssignmentRecord]:
        if user_id not in self._assignments:
            self._assignments[user_id] = await self.store.active_role_assignments_for(user_id, self.now)
        return self._assignments[user_id]


class AuthorizationService:
    def __init__(
        self,
        store: AuthorizationStore,
        cache: DecisionCache,
        audit: AuditService,
        invalidation: InvalidationService,
    ) -> None:
        self._store = store
        self._cache = cache
        self._audit = audit
        self._invalidation = invalidation

    # ── Core check ────────────────────────────────────────────────────────────

    async def authorize(
        self,
        user_id: UUID | str,
        action: str,
        resource_id: UUID | str,
        resource_type: str,
        security_context: dict | None = None,
    ) -> AuthorizationDecision:
        """
        Return the decision for *user_id* performing *action* on the resource.

        Raises ValidationError for malformed input (before any store or cache
        access) and AuthorizationIndeterminateError when the store cannot
        answer. Neither outcome is cached.
        """
        user_id = parse_uuid(user_id, "user_id")
        resource_id = parse_uuid(resource_id, "resource_id")
        if not isinstance(action, str) or not ACTION_PATTERN.match(action):
            raise ValidationError(f"Invalid action {action!r}", field="action")
        if not isinstance(resource_type, str) or not RESOURCE_TYPE_PATTERN.match(resource_type):
            raise ValidationError(f"Invalid resource type {resource_type!r}", field="resource_type")

        started = time.perf_counter()
        key = self._cache.key_for(user_id, action, resource_type, resource_id)

        cached = await self._cache.get(key, user_id)
        if cached is not None:
            decision = AuthorizationDecision.from_cache(cached)
            if decision.valid_until is None or self._store.now() < decision.valid_until:
                record_decision(decision.source.value, decision.allowed, True, time.perf_counter() - started)
                await self._audit_check(user_id, action, resource_id, resource_type, decision, True, security_context)
                return decision
            logger.debug(f"Cached decision for {key} lapsed at {decision.valid_until.isoformat()}")

        snapshot = self._cache.snapshot(user_id)
        try:
            decision = await self._evaluate(user_id, action, resource_id, resource_type)
            valid_until = await self._store.next_grant_change_for(user_id, decision.computed_at)
        except StoreError as e:
            record_indeterminate(e.error_code.value)
            logger.error(
                f"Authorization indeterminate for user={user_id} action={action} "
                f"resource={resource_type}:{resource_id}: {e.message}"
            )
            raise AuthorizationIndeterminateError(details={"cause": e.error_code.value, **e.details}) from e

        ttl = float(ttl_for_action(action))
        if valid_until is not None:
            ttl = min(ttl, (valid_until - decision.computed_at).total_seconds())
        payload = decision.model_copy(update={"valid_until": valid_until}).to_cache()
        if ttl > 0:
            await self._cache.put(key, user_id, payload, ttl, snapshot)
        decision = AuthorizationDecision.from_cache(payload)

        record_decision(decision.source.value, decision.allowed, False, time.perf_counter() - started)
        await self._audit_check(user_id, action, resource_id, resource_type, decision, False, security_context)
        return decision

    async def has_permission(self, user_id: UUID | str, action: str, resource_id: UUID | str, resource_type: str) -> bool:
        decision = await self.authorize(user_id, action, resource_id, resource_type)
        return decision.allowed

    async def require_permission(
        self, user_id: UUID | str, action: str, resource_id: UUID | str, resource_type: str
    ) -> AuthorizationDecision:
        decision = await self.authorize(user_id, action, resource_id, resource_type)
        if not decision.allowed:
            raise PermissionDeniedError(required_permission=action, reason=decision.reason)
        return decision

    # ── Evaluation ───────────────────────────────────────────────────────────

    async def _evaluate(
        self, user_id: UUID, action: str, resource_id: UUID, resource_type: str
    ) -> AuthorizationDecision:
        now = self._store.now()
        ctx = _Evaluation(self._store, now)

        # 1. Emergency override
        override = await self._store.active_override_for(user_id, now)
        if override is not None and any(permission_covers(p, action) for p in override.granted_permissions):
            await self._audit.log(
                AuditEventType.EMERGENCY_ACCESS_GRANTED,
                AuditCategory.EMERGENCY,
                f"Emergency override {override.id} granted {action} on {resource_type}:{resource_id}",
                policy=AuditPolicy.BEST_EFFORT,
                actor_user_id=user_id,
                target_user_id=user_id,
                event_data={
                    "override_id": str(override.id),
                    "action": action,
                    "resource_id": str(resource_id),
                    "resource_type": resource_type,
                    "reason": override.reason,
                },
                severity=AuditSeverity.HIGH,
            )
            return AuthorizationDecision(
                allowed=True,
                reason=f"emergency override ({override.reason})",
                source=DecisionSource.OVERRIDE,
                emergency_override_id=override.id,
                details={"expires_at": override.expires_at.isoformat()},
                computed_at=now,
            )

        # 2. Delegations
        delegations = await self._store.active_delegations_to(user_id, now)
        decision = await self._check_delegations(ctx, delegations, action, resource_id, resource_type)
        if decision is not None:
            return decision

        # 3. Own roles
        assignments = await ctx.assignments_of(user_id)
        decision = await self._check_roles(ctx, assignments, action, resource_id, resource_type)
        if decision is not None:
            return decision

        # 4. Default deny
        return AuthorizationDecision(
            allowed=False,
            reason="no matching grant",
            source=DecisionSource.DEFAULT_DENY,
            computed_at=now,
        )

    async def _check_delegations(
        self,
        ctx: _Evaluation,
        delegations: list[DelegationRecord],
        action: str,
        resource_id: UUID,
        resource_type: str,
    ) -> AuthorizationDecision | None:
        first_allow: DelegationRecord | None = None
        for delegation in delegations:
            grants = await ctx.grants_of(delegation.role_id)
            if delegation.permissions is not None:
                grants = restrict_to_subset(grants, delegation.permissions)
            verdict = evaluate_grants(grants, action)
            if verdict is None:
                continue
            if not await ctx.matcher.matches(delegation.scope, resource_type, resource_id):
                continue
            if not await self._delegator_still_holds(ctx, delegation, resource_id, resource_type):
                logger.info(
                    f"Delegation {delegation.id} skipped: delegator {delegation.from_user_id} "
                    f"no longer holds role {delegation.role_id} for {resource_type}:{resource_id}"
                )
                continue

            if verdict == PermissionEffect.DENY:
                return AuthorizationDecision(
                    allowed=False,
                    reason="explicitly denied by delegated role",
                    source=DecisionSource.DELEGATION,
                    role_id=delegation.role_id,
                    delegation_id=delegation.id,
                    computed_at=ctx.now,
                )
            if first_allow is None:
                first_allow = delegation

        if first_allow is None:
            return None
        return AuthorizationDecision(
            allowed=True,
            reason=f"delegated by {first_allow.from_user_id}",
            source=DecisionSource.DELEGATION,
            role_id=first_allow.role_id,
            delegation_id=first_allow.id,
            computed_at=ctx.now,
        )

    async def _delegator_still_holds(
        self, ctx: _Evaluation, delegation: DelegationRecord, resource_id: UUID, resource_type: str
    ) -> bool:
        """
        The delegator must currently hold the delegated role through one of
        their own assignments, in a scope covering the resource. Only direct
        assignments count, never other delegations.
        """
        for assignment in await ctx.assignments_of(delegation.from_user_id):
            if assignment.role_id != delegation.role_id:
                continue
            if await ctx.matcher.matches_any(assignment.scopes, resource_type, resource_id):
                return True
        return False

    async def _check_roles(
        self,
        ctx: _Evaluation,
        assignments: list[RoleAssignmentRecord],
        action: str,
        resource_id: UUID,
        resource_type: str,
    ) -> AuthorizationDecision | None:
        first_allow: RoleAssignmentRecord | None = None
        for assignment in assignments:
            verdict = evaluate_grants(await ctx.grants_of(assignment.role_id), action)
            if verdict is None:
                continue
            if not await ctx.matcher.matches_any(assignment.scopes, resource_type, resource_id):
                continue

            if verdict == PermissionEffect.DENY:
                return AuthorizationDecision(
                    allowed=False,
                    reason=f"explicitly denied by role {assignment.role_type.value}",
                    source=DecisionSource.ROLE,
                    role_id=assignment.role_id,
                    details={"assignment_id": str(assignment.id)},
                    computed_at=ctx.now,
                )
            if first_allow is None:
                first_allow = assignment

        if first_allow is None:
            return None
        return AuthorizationDecision(
            allowed=True,
            reason=f"granted by role {first_allow.role_type.value}",
            source=DecisionSource.ROLE,
            role_id=first_allow.role_id,
            details={"assignment_id": str(first_allow.id)},
            computed_at=ctx.now,
        )

    async def _audit_check(
        self,
        user_id: UUID,
        action: str,
        resource_id: UUID,
        resource_type: str,
        decision: AuthorizationDecision,
        cache_hit: bool,
        security_context: dict | None,
    ) -> None:
        await self._audit.log(
            AuditEventType.PERMISSION_CHECK,
            AuditCategory.AUTHORIZATION,
            f"{action} on {resource_type}:{resource_id} -> {'allowed' if decision.allowed else 'denied'}",
            policy=AuditPolicy.BEST_EFFORT,
            actor_user_id=user_id,
            event_data={
                "action": action,
                "resource_id": str(resource_id),
                "resource_type": resource_type,
                "allowed": decision.allowed,
                "source": decision.source.value,
                "reason": decision.reason,
                "role_id": str(decision.role_id) if decision.role_id else None,
                "delegation_id": str(decision.delegation_id) if decision.delegation_id else None,
                "emergency_override_id": (
                    str(decision.emergency_override_id) if decision.emergency_override_id else None
                ),
                "cache_hit": cache_hit,
            },
            success=decision.allowed,
            security_context=security_context,
        )

    # ── Cache facade ─────────────────────────────────────────────────────────

    async def invalidate_cache(self, event: InvalidationEvent) -> int:
        return await self._invalidation.invalidate(event)

    async def clear_all_cache(self) -> int:
        return await self._cache.clear()

    async def warmup_cache_for_users(
        self,
        user_ids: Iterable[UUID],
        actions: Iterable[str] = COMMON_ACTIONS,
    ) -> int:
        """
        Pre-compute decisions for each user on their own user resource.

        Runs in batches; individual failures are logged and skipped.
        Returns the number of decisions computed.
        """
        user_ids = list(user_ids)
        actions = list(actions)
        batch_size = settings.warmup_batch_size
        warmed = 0

        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start:start + batch_size]
            results = await asyncio.gather(
                *(self.authorize(user_id, action, user_id, "user") for user_id in batch for action in actions),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.warning(f"Cache warmup check failed: {result}")
                else:
                    warmed += 1
            if start + batch_size < len(user_ids):
                await asyncio.sleep(settings.warmup_batch_delay_seconds)

        logger.info(f"Cache warmup complete: {warmed} decisions for {len(user_ids)} users")
        return warmed

    async def get_cache_health(self) -> dict:
        return await self._cache.health()

    def get_cache_metrics(self) -> dict:
        return self._cache.metrics()

    def get_cache_hit_rate(self) -> dict:
        return self._cache.hit_rate()
