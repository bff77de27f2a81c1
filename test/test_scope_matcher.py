"""
Tests for ScopeMatcher.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from authz.exceptions import StoreTimeoutError
from authz.schemas.scope import FamilyScope, GlobalScope, IndividualScope, UnmatchableScope
from authz.services.scope_matcher import ScopeMatcher


@pytest.fixture
def family_ids():
    return uuid.uuid4(), uuid.uuid4()


@pytest.fixture
def member_id():
    return uuid.uuid4()


@pytest.fixture
def store(family_ids, member_id):
    """Store stub: member_id belongs to the first family only."""
    f1, _ = family_ids
    mock = MagicMock()

    async def family_ids_of(entity_id):
        return frozenset({f1}) if entity_id == member_id else frozenset()

    mock.family_ids_of = AsyncMock(side_effect=family_ids_of)
    return mock


class TestMatches:
    """Tests for scope-to-resource matching."""

    async def test_global_matches_everything(self, store):
        matcher = ScopeMatcher(store)
        assert await matcher.matches(GlobalScope(), "document", uuid.uuid4())
        store.family_ids_of.assert_not_called()

    async def test_family_matches_family_itself(self, store, family_ids):
        f1, _ = family_ids
        matcher = ScopeMatcher(store)
        assert await matcher.matches(FamilyScope(entity_ids=(f1,)), "family", f1)

    async def test_family_matches_current_member(self, store, family_ids, member_id):
        f1, _ = family_ids
        matcher = ScopeMatcher(store)
        assert await matcher.matches(FamilyScope(entity_ids=(f1,)), "user", member_id)

    async def test_family_does_not_match_other_family(self, store, family_ids, member_id):
        f1, f2 = family_ids
        matcher = ScopeMatcher(store)
        assert not await matcher.matches(FamilyScope(entity_ids=(f1,)), "family", f2)
        assert not await matcher.matches(FamilyScope(entity_ids=(f2,)), "user", member_id)

    async def test_individual_exact_match(self, store, member_id):
        matcher = ScopeMatcher(store)
        assert await matcher.matches(IndividualScope(entity_ids=(member_id,)), "user", member_id)
        assert not await matcher.matches(IndividualScope(entity_ids=(member_id,)), "user", uuid.uuid4())

    async def test_unmatchable_never_matches(self, store, member_id):
        matcher = ScopeMatcher(store)
        assert not await matcher.matches(UnmatchableScope(raw={"type": "family"}), "user", member_id)
        assert not await matcher.matches(None, "user", member_id)

    async def test_membership_lookup_memoised(self, store, family_ids, member_id):
        f1, f2 = family_ids
        matcher = ScopeMatcher(store)

        await matcher.matches(FamilyScope(entity_ids=(f2,)), "user", member_id)
        await matcher.matches(FamilyScope(entity_ids=(f1,)), "user", member_id)

        store.family_ids_of.assert_awaited_once_with(member_id)

    async def test_store_errors_propagate(self, family_ids):
        f1, _ = family_ids
        store = MagicMock()
        store.family_ids_of = AsyncMock(side_effect=StoreTimeoutError("family_ids_of", 5.0))
        matcher = ScopeMatcher(store)

        with pytest.raises(StoreTimeoutError):
            await matcher.matches(FamilyScope(entity_ids=(f1,)), "user", uuid.uuid4())

    async def test_matches_any(self, store, member_id):
        matcher = ScopeMatcher(store)
        scopes = (UnmatchableScope(), IndividualScope(entity_ids=(member_id,)))
        assert await matcher.matches_any(scopes, "user", member_id)
        assert not await matcher.matches_any((), "user", member_id)


class TestCovers:
    """Tests for scope containment used when delegating."""

    async def test_global_covers_everything(self, store, family_ids, member_id):
        f1, _ = family_ids
        matcher = ScopeMatcher(store)
        assert await matcher.covers(GlobalScope(), GlobalScope())
        assert await matcher.covers(GlobalScope(), FamilyScope(entity_ids=(f1,)))
        assert await matcher.covers(GlobalScope(), IndividualScope(entity_ids=(member_id,)))

    async def test_family_covers_subset_of_families(self, store, family_ids):
        f1, f2 = family_ids
        matcher = ScopeMatcher(store)
        assert await matcher.covers(FamilyScope(entity_ids=(f1, f2)), FamilyScope(entity_ids=(f1,)))
        assert not await matcher.covers(FamilyScope(entity_ids=(f1,)), FamilyScope(entity_ids=(f1, f2)))

    async def test_family_covers_its_members(self, store, family_ids, member_id):
        f1, f2 = family_ids
        matcher = ScopeMatcher(store)
        assert await matcher.covers(FamilyScope(entity_ids=(f1,)), IndividualScope(entity_ids=(member_id,)))
        assert not await matcher.covers(FamilyScope(entity_ids=(f2,)), IndividualScope(entity_ids=(member_id,)))

    async def test_narrower_never_covers_broader(self, store, family_ids, member_id):
        f1, _ = family_ids
        matcher = ScopeMatcher(store)
        assert not await matcher.covers(FamilyScope(entity_ids=(f1,)), GlobalScope())
        assert not await matcher.covers(IndividualScope(entity_ids=(member_id,)), FamilyScope(entity_ids=(f1,)))
        assert not await matcher.covers(UnmatchableScope(), IndividualScope(entity_ids=(member_id,)))

    async def test_individual_subset(self, store, member_id):
        other = uuid.uuid4()
        matcher = ScopeMatcher(store)
        both = IndividualScope(entity_ids=(member_id, other))
        assert await matcher.covers(both, IndividualScope(entity_ids=(other,)))
        assert not await matcher.covers(IndividualScope(entity_ids=(other,)), both)
