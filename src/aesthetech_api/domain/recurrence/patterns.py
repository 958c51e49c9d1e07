"""Recurrence pattern vocabulary, configuration and display helpers.

Weekdays follow the salon convention 0 = Sunday .. 6 = Saturday.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum

from aesthetech_api.domain.settings import is_valid_time_of_day, parse_time_of_day


class RecurrencePattern(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"
    SPECIFIC_DAYS = "SPECIFIC_DAYS"
    NTH_WEEKDAY = "NTH_WEEKDAY"


class RecurrenceEndType(str, Enum):
    NEVER = "NEVER"
    AFTER_COUNT = "AFTER_COUNT"
    BY_DATE = "BY_DATE"


DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
DAY_NAMES_SHORT = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
NTH_WEEK_LABELS = ("1st", "2nd", "3rd", "4th", "Last")
LAST_WEEK = 5

WEEKDAY_ANCHORED_PATTERNS = frozenset(
    {
        RecurrencePattern.WEEKLY,
        RecurrencePattern.BIWEEKLY,
        RecurrencePattern.CUSTOM,
        RecurrencePattern.NTH_WEEKDAY,
    }
)


def salon_weekday(value: dt.date) -> int:
    """Convert Python's Monday-first weekday to the Sunday-first convention."""

    return (value.weekday() + 1) % 7


@dataclass(frozen=True)
class RecurrenceConfig:
    pattern: RecurrencePattern
    start_date: dt.date
    time_of_day: str
    end_type: RecurrenceEndType = RecurrenceEndType.NEVER
    day_of_week: int | None = None
    custom_weeks: int | None = None
    specific_days: tuple[int, ...] = ()
    nth_week: int | None = None
    end_after_count: int | None = None
    end_by_date: dt.date | None = None
    exception_dates: frozenset[dt.date] = field(default_factory=frozenset)

    @property
    def time(self) -> dt.time:
        return parse_time_of_day(self.time_of_day)

    def with_exceptions(self, dates: frozenset[dt.date] | set[dt.date]) -> "RecurrenceConfig":
        return replace(self, exception_dates=frozenset(dates))


def validate_recurrence_config(config: RecurrenceConfig) -> list[str]:
    """Return human-readable problems with a pattern configuration."""

    errors: list[str] = []
    if not is_valid_time_of_day(config.time_of_day):
        errors.append("Valid time of day (HH:mm) is required")

    if config.pattern in WEEKDAY_ANCHORED_PATTERNS and (
        config.day_of_week is None or not 0 <= config.day_of_week <= 6
    ):
        errors.append("Day of week (0-6) is required")

    if config.pattern is RecurrencePattern.CUSTOM and (
        config.custom_weeks is None or config.custom_weeks < 1
    ):
        errors.append("Custom weeks must be at least 1")

    if config.pattern is RecurrencePattern.SPECIFIC_DAYS:
        if not config.specific_days:
            errors.append("At least one day must be selected for specific days pattern")
        elif any(not 0 <= day <= 6 for day in config.specific_days):
            errors.append("Specific days must be weekdays between 0 and 6")

    if config.pattern is RecurrencePattern.NTH_WEEKDAY and (
        config.nth_week is None or not 1 <= config.nth_week <= LAST_WEEK
    ):
        errors.append("Nth week (1-5) is required for nth weekday pattern")

    if config.end_type is RecurrenceEndType.AFTER_COUNT and (
        config.end_after_count is None or config.end_after_count < 1
    ):
        errors.append("End after count must be at least 1")

    if config.end_type is RecurrenceEndType.BY_DATE:
        if config.end_by_date is None:
            errors.append("End by date is required")
        elif config.end_by_date < config.start_date:
            errors.append("End by date must not be before the start date")

    return errors


def pattern_label(config: RecurrenceConfig) -> str:
    pattern = config.pattern
    if pattern is RecurrencePattern.DAILY:
        return "Daily"
    if pattern is RecurrencePattern.WEEKLY:
        return "Weekly"
    if pattern is RecurrencePattern.BIWEEKLY:
        return "Every 2 weeks"
    if pattern is RecurrencePattern.MONTHLY:
        return "Monthly"
    if pattern is RecurrencePattern.CUSTOM:
        weeks = config.custom_weeks or 1
        return f"Every {weeks} week{'s' if weeks > 1 else ''}"
    if pattern is RecurrencePattern.SPECIFIC_DAYS:
        if not config.specific_days:
            return "Specific days"
        return "Every " + ", ".join(DAY_NAMES_SHORT[day] for day in sorted(set(config.specific_days)))
    if pattern is RecurrencePattern.NTH_WEEKDAY:
        if config.nth_week is None or config.day_of_week is None:
            return "Nth weekday of month"
        nth_label = NTH_WEEK_LABELS[min(config.nth_week, LAST_WEEK) - 1]
        return f"{nth_label} {DAY_NAMES[config.day_of_week]} of each month"
    raise ValueError(f"Unsupported recurrence pattern: {pattern}")


def format_recurrence_summary(config: RecurrenceConfig) -> str:
    """One-line description, e.g. ``Weekly at 2:30 PM on Mondays, 6 occurrences``."""

    clock = config.time
    hour = clock.hour % 12 or 12
    meridiem = "AM" if clock.hour < 12 else "PM"
    summary = f"{pattern_label(config)} at {hour}:{clock.minute:02d} {meridiem}"

    if config.pattern in {
        RecurrencePattern.WEEKLY,
        RecurrencePattern.BIWEEKLY,
        RecurrencePattern.CUSTOM,
    } and config.day_of_week is not None:
        summary += f" on {DAY_NAMES[config.day_of_week]}s"

    if config.end_type is RecurrenceEndType.AFTER_COUNT:
        count = config.end_after_count or 1
        summary += f", {count} occurrence{'s' if count > 1 else ''}"
    elif config.end_type is RecurrenceEndType.BY_DATE and config.end_by_date is not None:
        summary += f", until {config.end_by_date.strftime('%b')} {config.end_by_date.day}, {config.end_by_date.year}"
    elif config.end_type is RecurrenceEndType.NEVER:
        summary += ", ongoing"
    return summary


__all__ = [
    "DAY_NAMES",
    "DAY_NAMES_SHORT",
    "LAST_WEEK",
    "RecurrenceConfig",
    "RecurrenceEndType",
    "RecurrencePattern",
    "format_recurrence_summary",
    "pattern_label",
    "salon_weekday",
    "validate_recurrence_config",
]
