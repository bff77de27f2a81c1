"""
ScopeMatcher

Decides whether a stored scope covers a requested resource. Family scopes
also cover current members of the scoped families, which needs a membership
lookup; lookups are memoised for the lifetime of one matcher, and a fresh
matcher is created for every authorization call.
"""

import logging
from uuid import UUID

from authz.schemas.scope import FamilyScope, GlobalScope, IndividualScope

logger = logging.getLogger(__name__)


class ScopeMatcher:
    def __init__(self, store) -> None:
        self._store = store
        self._families: dict[UUID, frozenset[UUID]] = {}

    async def matches(self, scope, resource_type: str, resource_id: UUID) -> bool:
        """
        Return True if *scope* covers the resource.

        Unknown or malformed scopes never match. Store errors raised by the
        membership lookup propagate to the caller.
        """
        if isinstance(scope, GlobalScope):
            return True
        if isinstance(scope, IndividualScope):
            return resource_id in scope.entity_ids
        if isinstance(scope, FamilyScope):
            if resource_id in scope.entity_ids:
                return True
            memberships = await self.families_of(resource_id)
            return not memberships.isdisjoint(scope.entity_ids)
        return False

    async def matches_any(self, scopes, resource_type: str, resource_id: UUID) -> bool:
        for scope in scopes:
            if await self.matches(scope, resource_type, resource_id):
                return True
        return False

    async def covers(self, outer, inner) -> bool:
        """
        Return True if *outer* is equal to or broader than *inner*.

        Used when a delegation is created: the delegator cannot hand out a
        scope wider than the one they hold.
        """
        if isinstance(outer, GlobalScope):
            return isinstance(inner, (GlobalScope, FamilyScope, IndividualScope))
        if isinstance(outer, FamilyScope):
            if isinstance(inner, FamilyScope):
                return set(inner.entity_ids) <= set(outer.entity_ids)
            if isinstance(inner, IndividualScope):
                for entity_id in inner.entity_ids:
                    if not await self.matches(outer, "entity", entity_id):
                        return False
                return True
            return False
        if isinstance(outer, IndividualScope):
            return isinstance(inner, IndividualScope) and set(inner.entity_ids) <= set(outer.entity_ids)
        return False

    async def families_of(self, entity_id: UUID) -> frozenset[UUID]:
        if entity_id not in self._families:
            self._families[entity_id] = await self._store.family_ids_of(entity_id)
        return self._families[entity_id]
