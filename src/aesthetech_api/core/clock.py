"""Timezone-aware clock used by the loyalty and recurrence engines."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Normalize a datetime read back from the database to an aware UTC value."""

    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


@dataclass(frozen=True)
class SalonClock:
    """Supplies "now" both as a UTC instant and in the salon's local zone."""

    timezone: ZoneInfo
    source: Callable[[], dt.datetime] = field(default=utcnow, compare=False)

    @classmethod
    def for_zone(
        cls,
        name: str,
        *,
        source: Callable[[], dt.datetime] | None = None,
    ) -> "SalonClock":
        return cls(timezone=resolve_timezone(name), source=source or utcnow)

    def now(self) -> dt.datetime:
        return ensure_utc(self.source())

    def local_now(self) -> dt.datetime:
        return self.now().astimezone(self.timezone)

    def today(self) -> dt.date:
        return self.local_now().date()

    def localize(self, value: dt.datetime) -> dt.datetime:
        return ensure_utc(value).astimezone(self.timezone)


__all__ = ["SalonClock", "ensure_utc", "resolve_timezone", "utcnow"]
