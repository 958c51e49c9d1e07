"""Immutable salon settings snapshot handed to every engine call."""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aesthetech_api.domain.loyalty.tiers import TierMultipliers, TierThresholds

_HH_MM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> dt.time:
    match = _HH_MM.match(value or "")
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    return dt.time(int(match.group(1)), int(match.group(2)))


def is_valid_time_of_day(value: str | None) -> bool:
    return bool(value) and _HH_MM.match(value) is not None


@dataclass(frozen=True)
class SettingsSnapshot:
    thresholds: TierThresholds = field(default_factory=lambda: TierThresholds(gold=500, platinum=1000))
    multipliers: TierMultipliers = field(
        default_factory=lambda: TierMultipliers(
            silver=Decimal("1.0"), gold=Decimal("1.5"), platinum=Decimal("2.0")
        )
    )
    points_per_currency_unit: Decimal = Decimal("1")
    redemption_rate: int = 100
    tax_rate: Decimal = Decimal("0")
    points_expiry_enabled: bool = False
    points_expiry_months: int = 12
    birthday_bonus_enabled: bool = True
    birthday_bonus_points: int = 50
    timezone: str = "UTC"
    business_hours_start: str = "09:00"
    business_hours_end: str = "19:00"

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def opening_time(self) -> dt.time:
        return parse_time_of_day(self.business_hours_start)

    @property
    def closing_time(self) -> dt.time:
        return parse_time_of_day(self.business_hours_end)

    def with_changes(self, **changes: Any) -> "SettingsSnapshot":
        return replace(self, **changes)

    def validate(self) -> list[str]:
        """Consistency rules enforced when settings are written."""

        errors: list[str] = []
        if self.thresholds.gold < 0:
            errors.append("Gold threshold must be zero or greater")
        if self.thresholds.platinum <= self.thresholds.gold:
            errors.append("Platinum threshold must be greater than gold threshold")
        if self.multipliers.silver <= 0:
            errors.append("Tier multipliers must be positive")
        if not (self.multipliers.silver <= self.multipliers.gold <= self.multipliers.platinum):
            errors.append("Tier multipliers must ascend from silver to platinum")
        if self.points_per_currency_unit < 0:
            errors.append("Points per currency unit cannot be negative")
        if self.redemption_rate < 1:
            errors.append("Redemption rate must be at least 1 point per currency unit")
        if self.tax_rate < 0 or self.tax_rate > 100:
            errors.append("Tax rate must be between 0 and 100")
        if self.points_expiry_months < 1:
            errors.append("Points expiry must be at least 1 month")
        if self.birthday_bonus_points < 1:
            errors.append("Birthday bonus must be at least 1 point")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown timezone: {self.timezone}")
        if not is_valid_time_of_day(self.business_hours_start) or not is_valid_time_of_day(
            self.business_hours_end
        ):
            errors.append("Business hours must use HH:MM format")
        elif self.opening_time >= self.closing_time:
            errors.append("Business hours must close after they open")
        return errors


__all__ = ["SettingsSnapshot", "is_valid_time_of_day", "parse_time_of_day"]
