"""State-free occurrence generator for recurring appointment series."""

from __future__ import annotations

import calendar
import datetime as dt
import math
from typing import Callable, Iterator
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from .patterns import (
    LAST_WEEK,
    RecurrenceConfig,
    RecurrenceEndType,
    RecurrencePattern,
    salon_weekday,
    validate_recurrence_config,
)

DEFAULT_MAX_OCCURRENCES = 100
DEFAULT_NEVER_HORIZON_MONTHS = 3
DEFAULT_PREVIEW_LIMIT = 6
# Bounds candidate scanning when filters reject everything (e.g. every date excepted)
MAX_CANDIDATE_STEPS = 20_000

_ONE_DAY = dt.timedelta(days=1)

CandidateSource = Callable[[RecurrenceConfig], Iterator[dt.date]]


def next_day_of_week(from_date: dt.date, weekday: int) -> dt.date:
    """First date on or after ``from_date`` falling on ``weekday`` (0 = Sunday)."""

    return from_date + dt.timedelta(days=(weekday - salon_weekday(from_date)) % 7)


def get_nth_weekday_of_month(year: int, month: int, weekday: int, nth: int) -> dt.date | None:
    """The ``nth`` matching weekday of a month; ``nth == 5`` means the last one."""

    _, days_in_month = calendar.monthrange(year, month)
    matches = [
        day
        for day in (dt.date(year, month, number) for number in range(1, days_in_month + 1))
        if salon_weekday(day) == weekday
    ]
    if not matches:
        return None
    if nth == LAST_WEEK:
        return matches[-1]
    if 1 <= nth <= len(matches):
        return matches[nth - 1]
    return None


def _daily(config: RecurrenceConfig) -> Iterator[dt.date]:
    current = config.start_date
    while True:
        yield current
        current += _ONE_DAY


def _every_n_weeks(config: RecurrenceConfig, weeks: int) -> Iterator[dt.date]:
    current = next_day_of_week(config.start_date, config.day_of_week or 0)
    step = dt.timedelta(weeks=max(weeks, 1))
    while True:
        yield current
        current += step


def _weekly(config: RecurrenceConfig) -> Iterator[dt.date]:
    return _every_n_weeks(config, 1)


def _biweekly(config: RecurrenceConfig) -> Iterator[dt.date]:
    return _every_n_weeks(config, 2)


def _custom(config: RecurrenceConfig) -> Iterator[dt.date]:
    return _every_n_weeks(config, config.custom_weeks or 1)


def _specific_days(config: RecurrenceConfig) -> Iterator[dt.date]:
    wanted = frozenset(config.specific_days)
    if not wanted:
        return
    for current in _daily(config):
        if salon_weekday(current) in wanted:
            yield current


def _monthly(config: RecurrenceConfig) -> Iterator[dt.date]:
    # Offsets are taken from the start date so a clamped month never shifts later ones
    offset = 0
    while True:
        yield config.start_date + relativedelta(months=offset)
        offset += 1


def _nth_weekday(config: RecurrenceConfig) -> Iterator[dt.date]:
    if config.nth_week is None or config.day_of_week is None:
        return
    cursor = config.start_date.replace(day=1)
    while True:
        candidate = get_nth_weekday_of_month(cursor.year, cursor.month, config.day_of_week, config.nth_week)
        if candidate is not None and candidate >= config.start_date:
            yield candidate
        cursor += relativedelta(months=1)


_CANDIDATE_SOURCES: dict[RecurrencePattern, CandidateSource] = {
    RecurrencePattern.DAILY: _daily,
    RecurrencePattern.WEEKLY: _weekly,
    RecurrencePattern.BIWEEKLY: _biweekly,
    RecurrencePattern.MONTHLY: _monthly,
    RecurrencePattern.CUSTOM: _custom,
    RecurrencePattern.SPECIFIC_DAYS: _specific_days,
    RecurrencePattern.NTH_WEEKDAY: _nth_weekday,
}


def candidate_source(pattern: RecurrencePattern) -> CandidateSource:
    try:
        return _CANDIDATE_SOURCES[pattern]
    except KeyError as exc:
        raise ValueError(f"Unsupported recurrence pattern: {pattern}") from exc


def _cutoff(config: RecurrenceConfig, today: dt.date, never_horizon_months: int) -> dt.date | None:
    if config.end_type is RecurrenceEndType.NEVER:
        return max(config.start_date, today) + relativedelta(months=never_horizon_months)
    if config.end_type is RecurrenceEndType.BY_DATE:
        return config.end_by_date
    return None


def generate_occurrences(
    config: RecurrenceConfig,
    *,
    now: dt.datetime,
    tz: ZoneInfo,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    never_horizon_months: int = DEFAULT_NEVER_HORIZON_MONTHS,
) -> list[dt.datetime]:
    """Produce ordered, deduplicated future occurrence instants in ``tz``.

    Dates before today (salon time) and exception dates are filtered out and do
    not count towards ``end_after_count``. NEVER series stop at a horizon of
    ``never_horizon_months`` past the later of start date and today, exclusive;
    BY_DATE series include the end date itself.
    """

    errors = validate_recurrence_config(config)
    if errors:
        raise ValueError("; ".join(errors))

    source = candidate_source(config.pattern)
    today = now.astimezone(tz).date()
    cutoff = _cutoff(config, today, never_horizon_months)
    cutoff_inclusive = config.end_type is RecurrenceEndType.BY_DATE
    limit = max_occurrences
    if config.end_type is RecurrenceEndType.AFTER_COUNT:
        limit = min(limit, config.end_after_count or 1)

    time_of_day = config.time
    occurrences: list[dt.datetime] = []
    seen: set[dt.datetime] = set()
    for step, candidate in enumerate(source(config)):
        if step >= MAX_CANDIDATE_STEPS or len(occurrences) >= limit:
            break
        if cutoff is not None and (candidate > cutoff or (candidate == cutoff and not cutoff_inclusive)):
            break
        if candidate < today or candidate in config.exception_dates:
            continue
        instant = dt.datetime.combine(candidate, time_of_day, tzinfo=tz)
        if instant in seen:
            continue
        seen.add(instant)
        occurrences.append(instant)

    return sorted(occurrences)


def preview_dates(
    config: RecurrenceConfig,
    *,
    now: dt.datetime,
    tz: ZoneInfo,
    limit: int = DEFAULT_PREVIEW_LIMIT,
    never_horizon_months: int = DEFAULT_NEVER_HORIZON_MONTHS,
) -> list[dt.datetime]:
    return generate_occurrences(
        config,
        now=now,
        tz=tz,
        max_occurrences=limit,
        never_horizon_months=never_horizon_months,
    )


def estimate_occurrences(
    config: RecurrenceConfig,
    *,
    now: dt.datetime,
    tz: ZoneInfo,
    never_horizon_months: int = DEFAULT_NEVER_HORIZON_MONTHS,
) -> int:
    """Rough count for form previews; exact for AFTER_COUNT and BY_DATE."""

    if config.end_type is RecurrenceEndType.AFTER_COUNT:
        return config.end_after_count or 1
    if config.end_type is RecurrenceEndType.BY_DATE:
        return len(
            generate_occurrences(
                config.with_exceptions(frozenset()),
                now=now,
                tz=tz,
                max_occurrences=365,
            )
        )

    months = never_horizon_months
    per_pattern = {
        RecurrencePattern.DAILY: months * 30,
        RecurrencePattern.WEEKLY: months * 4,
        RecurrencePattern.BIWEEKLY: months * 2,
        RecurrencePattern.MONTHLY: months,
        RecurrencePattern.CUSTOM: math.ceil(months * 4 / (config.custom_weeks or 1)),
        RecurrencePattern.SPECIFIC_DAYS: months * 4 * max(len(set(config.specific_days)), 1),
        RecurrencePattern.NTH_WEEKDAY: months,
    }
    return per_pattern[config.pattern]


__all__ = [
    "DEFAULT_MAX_OCCURRENCES",
    "DEFAULT_NEVER_HORIZON_MONTHS",
    "MAX_CANDIDATE_STEPS",
    "candidate_source",
    "estimate_occurrences",
    "generate_occurrences",
    "get_nth_weekday_of_month",
    "next_day_of_week",
    "preview_dates",
]
