"""
Tests for scope, schedule and decision schemas.
"""

import uuid
from datetime import datetime, time, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from authz.constants import DecisionSource
from authz.schemas.decision import AuthorizationDecision
from authz.schemas.schedule import InvalidSchedule, RecurringSchedule, parse_schedule
from authz.schemas.scope import (
    FamilyScope,
    GlobalScope,
    IndividualScope,
    UnmatchableScope,
    dump_scope,
    parse_scope,
    parse_scopes,
)

# Wednesday
WEDNESDAY_10_UTC = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


class TestScopeParsing:
    """Tests for validating stored scope JSON."""

    def test_global(self):
        assert isinstance(parse_scope({"type": "global"}), GlobalScope)

    def test_family(self):
        family_id = uuid.uuid4()
        scope = parse_scope({"type": "family", "entity_ids": [str(family_id)]})
        assert isinstance(scope, FamilyScope)
        assert scope.entity_ids == (family_id,)

    def test_individual(self):
        user_id = uuid.uuid4()
        scope = parse_scope({"type": "individual", "entity_ids": [str(user_id)]})
        assert isinstance(scope, IndividualScope)

    @pytest.mark.parametrize(
        "raw",
        [
            {"type": "family"},
            {"type": "family", "entity_ids": []},
            {"type": "individual", "entity_ids": ["not-a-uuid"]},
            {"type": "galaxy"},
            "global",
            None,
        ],
    )
    def test_malformed_becomes_unmatchable(self, raw):
        assert isinstance(parse_scope(raw), UnmatchableScope)

    def test_non_list_scopes(self):
        scopes = parse_scopes({"type": "global"})
        assert len(scopes) == 1
        assert isinstance(scopes[0], UnmatchableScope)

    def test_dump_round_trips_through_json_types(self):
        family_id = uuid.uuid4()
        dumped = dump_scope(FamilyScope(entity_ids=(family_id,)))
        assert dumped == {"type": "family", "entity_ids": [str(family_id)]}


class TestRecurringSchedule:
    """Tests for weekly access windows."""

    def test_covers_inside_window(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(9), time_end=time(17))
        assert schedule.covers(WEDNESDAY_10_UTC)

    def test_end_is_exclusive(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(9), time_end=time(10))
        assert not schedule.covers(WEDNESDAY_10_UTC)

    def test_start_is_inclusive(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(10), time_end=time(11))
        assert schedule.covers(WEDNESDAY_10_UTC)

    def test_sunday_is_day_zero(self):
        sunday = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)
        schedule = RecurringSchedule(days=(0,), time_start=time(0), time_end=time(23, 59))
        assert schedule.covers(sunday)
        assert not schedule.covers(WEDNESDAY_10_UTC)

    def test_evaluated_in_schedule_timezone(self):
        """10:00 UTC is 05:00 in New York, before a 09:00 start."""
        schedule = RecurringSchedule(
            days=(3,), time_start=time(9), time_end=time(17), timezone="America/New_York"
        )
        assert not schedule.covers(WEDNESDAY_10_UTC)

    def test_day_boundary_uses_local_date(self):
        """23:30 UTC Wednesday is already Thursday in Berlin."""
        late = datetime(2026, 3, 4, 23, 30, tzinfo=timezone.utc)
        thursday = RecurringSchedule(days=(4,), time_start=time(0), time_end=time(1), timezone="Europe/Berlin")
        assert thursday.covers(late)

    def test_rejects_inverted_window(self):
        with pytest.raises(PydanticValidationError):
            RecurringSchedule(days=(1,), time_start=time(17), time_end=time(9))

    def test_rejects_bad_day_and_timezone(self):
        with pytest.raises(PydanticValidationError):
            RecurringSchedule(days=(7,), time_start=time(9), time_end=time(17))
        with pytest.raises(PydanticValidationError):
            RecurringSchedule(days=(1,), time_start=time(9), time_end=time(17), timezone="Mars/Olympus")

    def test_parse_none(self):
        assert parse_schedule(None) is None

    def test_parse_malformed_never_covers(self):
        schedule = parse_schedule({"days": [3], "time_start": "17:00", "time_end": "09:00"})
        assert isinstance(schedule, InvalidSchedule)
        assert not schedule.covers(WEDNESDAY_10_UTC)


class TestScheduleNextChange:
    """Tests for the next instant a schedule opens or closes."""

    def test_inside_window_returns_end(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(9), time_end=time(17))
        assert schedule.next_change(WEDNESDAY_10_UTC) == datetime(2026, 3, 4, 17, 0, tzinfo=timezone.utc)

    def test_before_window_returns_start(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(11), time_end=time(12))
        assert schedule.next_change(WEDNESDAY_10_UTC) == datetime(2026, 3, 4, 11, 0, tzinfo=timezone.utc)

    def test_after_window_returns_next_listed_day(self):
        schedule = RecurringSchedule(days=(3, 5), time_start=time(8), time_end=time(9))
        assert schedule.next_change(WEDNESDAY_10_UTC) == datetime(2026, 3, 6, 8, 0, tzinfo=timezone.utc)

    def test_wraps_to_same_weekday_next_week(self):
        schedule = RecurringSchedule(days=(3,), time_start=time(9), time_end=time(10))
        assert schedule.next_change(WEDNESDAY_10_UTC) == datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)

    def test_local_start_converted_to_utc(self):
        schedule = RecurringSchedule(
            days=(3,), time_start=time(9), time_end=time(17), timezone="America/New_York"
        )
        assert schedule.next_change(WEDNESDAY_10_UTC) == datetime(2026, 3, 4, 14, 0, tzinfo=timezone.utc)

    def test_malformed_schedule_never_changes(self):
        schedule = parse_schedule({"days": [3], "time_start": "17:00", "time_end": "09:00"})
        assert schedule.next_change(WEDNESDAY_10_UTC) is None


class TestAuthorizationDecision:
    """Tests for the cached decision payload."""

    def test_cache_payload_is_json_and_restores_equal(self):
        decision = AuthorizationDecision(
            allowed=True,
            reason="granted by role adult",
            source=DecisionSource.ROLE,
            role_id=uuid.uuid4(),
            details={"assignment_id": str(uuid.uuid4())},
            computed_at=WEDNESDAY_10_UTC,
        )
        payload = decision.to_cache()

        assert payload["source"] == "role"
        assert isinstance(payload["role_id"], str)
        assert AuthorizationDecision.from_cache(payload) == decision

    def test_default_deny_source_value(self):
        decision = AuthorizationDecision(
            allowed=False, reason="no matching grant", source=DecisionSource.DEFAULT_DENY, computed_at=WEDNESDAY_10_UTC
        )
        assert decision.to_cache()["source"] == "default-deny"
