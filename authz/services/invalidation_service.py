"""
InvalidationService

Maps committed mutations to cache evictions. Every write path in the admin
service calls invalidate() before it returns, so no read that starts after
the write can observe a decision computed before it.

Over-invalidation is acceptable; under-invalidation is not. When the set of
affected users cannot be determined the whole cache is cleared.
"""

import logging
from uuid import UUID

from authz.exceptions import StoreError, ValidationError
from authz.schemas.events import InvalidationEvent, InvalidationEventType
from authz.services.cache_service import DecisionCache
from authz.utils.metrics import record_invalidation

logger = logging.getLogger(__name__)

# Role grants cap the delegations derived from them, so role events also
# evict the holder's delegatees
ROLE_EVENTS = frozenset({InvalidationEventType.ROLE_ASSIGNED, InvalidationEventType.ROLE_REVOKED})

# Events that only change decisions for the user named in the event
USER_EVENTS = frozenset(
    {
        InvalidationEventType.DELEGATION_CREATED,
        InvalidationEventType.DELEGATION_APPROVED,
        InvalidationEventType.DELEGATION_REJECTED,
        InvalidationEventType.DELEGATION_REVOKED,
        InvalidationEventType.EMERGENCY_OVERRIDE_ACTIVATED,
        InvalidationEventType.EMERGENCY_OVERRIDE_DEACTIVATED,
    }
)

GLOBAL_EVENTS = frozenset(
    {InvalidationEventType.FAMILY_MEMBERSHIP_CHANGED, InvalidationEventType.GRANTS_EXPIRED}
)


class InvalidationService:
    def __init__(self, cache: DecisionCache, store) -> None:
        self._cache = cache
        self._store = store

    async def invalidate(self, event: InvalidationEvent) -> int:
        """Evict every cached decision *event* could have changed. Returns entries removed."""
        record_invalidation(event.type.value)

        if event.type in GLOBAL_EVENTS:
            return await self._clear(event)

        if event.type == InvalidationEventType.PERMISSION_SET_UPDATED:
            if event.permission_set_id is None:
                raise ValidationError("PERMISSION_SET_UPDATED requires permission_set_id", field="permission_set_id")
            try:
                users = await self._store.users_with_permission_set(event.permission_set_id)
            except StoreError as e:
                logger.warning(f"Affected-user lookup failed for {event.type.value}, clearing cache: {e.message}")
                return await self._clear(event)
            return await self._evict(users | set(event.user_ids))

        users = self._named_users(event)

        if event.type in ROLE_EVENTS:
            for user_id in list(users):
                try:
                    users |= await self._store.delegatee_ids_of(user_id)
                except StoreError as e:
                    logger.warning(f"Delegatee lookup failed for {event.type.value}, clearing cache: {e.message}")
                    return await self._clear(event)
            return await self._evict(users)

        if event.type in USER_EVENTS:
            return await self._evict(users)

        # Unmapped event types fail safe
        logger.warning(f"No invalidation mapping for {event.type.value}, clearing cache")
        return await self._clear(event)

    def _named_users(self, event: InvalidationEvent) -> set[UUID]:
        users = set(event.user_ids)
        if event.user_id is not None:
            users.add(event.user_id)
        if not users:
            raise ValidationError(f"{event.type.value} requires user_id", field="user_id")
        return users

    async def _evict(self, users: set[UUID]) -> int:
        removed = 0
        for user_id in users:
            removed += await self._cache.invalidate_user(user_id)
        logger.info(f"Invalidated cached decisions for {len(users)} users ({removed} entries)")
        return removed

    async def _clear(self, event: InvalidationEvent) -> int:
        removed = await self._cache.clear()
        logger.info(f"{event.type.value}: cleared decision cache ({removed} entries)")
        return removed
