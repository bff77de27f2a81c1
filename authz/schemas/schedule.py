import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class RecurringSchedule(BaseModel):
    """
    Weekly access window evaluated in the schedule's own timezone.

    Days use 0 = Sunday through 6 = Saturday. The window is half-open:
    time_start is inside, time_end is not.
    """

    model_config = ConfigDict(frozen=True)

    days: tuple[int, ...] = Field(..., min_length=1)
    time_start: time
    time_end: time
    timezone: str = "UTC"

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days must be between 0 (Sunday) and 6 (Saturday)")
        return tuple(sorted(set(value)))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    @model_validator(mode="after")
    def validate_window(self) -> "RecurringSchedule":
        if self.time_end <= self.time_start:
            raise ValueError("time_end must be after time_start")
        return self

    def covers(self, now: datetime) -> bool:
        local = now.astimezone(ZoneInfo(self.timezone))
        # datetime.weekday() is Monday=0; schedules are Sunday=0
        day = (local.weekday() + 1) % 7
        if day not in self.days:
            return False
        return self.time_start <= local.time().replace(tzinfo=None) < self.time_end

    def next_change(self, now: datetime) -> datetime | None:
        """The first instant after *now* at which covers() flips, in UTC."""
        zone = ZoneInfo(self.timezone)
        local = now.astimezone(zone)
        if self.covers(now):
            return datetime.combine(local.date(), self.time_end, tzinfo=zone).astimezone(timezone.utc)

        # A week ahead always reaches the same weekday again
        for offset in range(8):
            day = local.date() + timedelta(days=offset)
            if day.isoweekday() % 7 not in self.days:
                continue
            start = datetime.combine(day, self.time_start, tzinfo=zone)
            if start > local:
                return start.astimezone(timezone.utc)
        return None


class InvalidSchedule:
    """Stored schedule data that failed validation. Never covers any instant."""

    def __init__(self, raw: Any):
        self.raw = raw

    def covers(self, now: datetime) -> bool:
        return False

    def next_change(self, now: datetime) -> datetime | None:
        return None


def parse_schedule(raw: Any) -> RecurringSchedule | InvalidSchedule | None:
    if raw is None:
        return None
    try:
        return RecurringSchedule.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning(f"Malformed recurring schedule treated as closed: {raw!r} ({e.error_count()} errors)")
        return InvalidSchedule(raw)
