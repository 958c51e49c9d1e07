"""Pure tier and points math for the loyalty program.

Nothing in this module touches the database or reads ambient configuration:
thresholds, multipliers and rates are always passed in by the caller.
"""

from __future__ import annotations

import calendar
import datetime as dt
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Protocol

from dateutil.relativedelta import relativedelta


class LoyaltyTier(str, Enum):
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class LoyaltyTransactionType(str, Enum):
    EARNED = "EARNED"
    REDEEMED = "REDEEMED"
    BONUS = "BONUS"
    EXPIRED = "EXPIRED"
    ADJUSTMENT = "ADJUSTMENT"


EXPIRING_TRANSACTION_TYPES = frozenset({LoyaltyTransactionType.EARNED, LoyaltyTransactionType.BONUS})

_NEXT_TIER: dict[LoyaltyTier, LoyaltyTier | None] = {
    LoyaltyTier.SILVER: LoyaltyTier.GOLD,
    LoyaltyTier.GOLD: LoyaltyTier.PLATINUM,
    LoyaltyTier.PLATINUM: None,
}


@dataclass(frozen=True)
class TierThresholds:
    gold: int
    platinum: int

    def threshold_for(self, tier: LoyaltyTier) -> int:
        return {
            LoyaltyTier.SILVER: 0,
            LoyaltyTier.GOLD: self.gold,
            LoyaltyTier.PLATINUM: self.platinum,
        }[tier]


@dataclass(frozen=True)
class TierMultipliers:
    silver: Decimal
    gold: Decimal
    platinum: Decimal

    def for_tier(self, tier: LoyaltyTier) -> Decimal:
        return {
            LoyaltyTier.SILVER: self.silver,
            LoyaltyTier.GOLD: self.gold,
            LoyaltyTier.PLATINUM: self.platinum,
        }[tier]


@dataclass(frozen=True)
class PointsBreakdown:
    item_points: int
    spend_points: int
    base_points: int
    multiplier: Decimal
    earned: int


@dataclass(frozen=True)
class LoyaltyStats:
    total_earned: int
    total_redeemed: int
    total_expired: int
    total_bonus: int
    total_adjustments: int
    transaction_count: int

    def as_dict(self) -> dict[str, int]:
        return {
            "totalEarned": self.total_earned,
            "totalRedeemed": self.total_redeemed,
            "totalExpired": self.total_expired,
            "totalBonus": self.total_bonus,
            "totalAdjustments": self.total_adjustments,
            "transactionCount": self.transaction_count,
        }


class LedgerLine(Protocol):
    points: int
    type: LoyaltyTransactionType
    description: str | None


def calculate_tier(balance: int, thresholds: TierThresholds) -> LoyaltyTier:
    if balance >= thresholds.platinum:
        return LoyaltyTier.PLATINUM
    if balance >= thresholds.gold:
        return LoyaltyTier.GOLD
    return LoyaltyTier.SILVER


def get_tier_multiplier(tier: LoyaltyTier, multipliers: TierMultipliers) -> Decimal:
    return multipliers.for_tier(tier)


def get_next_tier(tier: LoyaltyTier) -> LoyaltyTier | None:
    return _NEXT_TIER[tier]


def get_points_to_next_tier(balance: int, thresholds: TierThresholds) -> int | None:
    """Points still needed for the next tier, ``None`` once PLATINUM is reached."""

    next_tier = get_next_tier(calculate_tier(balance, thresholds))
    if next_tier is None:
        return None
    return max(0, thresholds.threshold_for(next_tier) - balance)


def _percent(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 100
    ratio = (Decimal(numerator) * 100 / Decimal(denominator)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(ratio)))


def get_tier_progress(balance: int, thresholds: TierThresholds) -> int:
    """Progress (0-100) from the current tier's floor towards the next tier."""

    tier = calculate_tier(balance, thresholds)
    if tier is LoyaltyTier.PLATINUM:
        return 100
    floor_points = thresholds.threshold_for(tier)
    ceiling = thresholds.threshold_for(_NEXT_TIER[tier])  # type: ignore[arg-type]
    return _percent(balance - floor_points, ceiling - floor_points)


def calculate_points_earned(
    *,
    item_points: int,
    amount_spent: Decimal,
    points_per_unit: Decimal,
    multiplier: Decimal,
) -> PointsBreakdown:
    """Floor at every stage so rounding never inflates a balance."""

    spend_points = max(0, math.floor(Decimal(amount_spent) * Decimal(points_per_unit)))
    base_points = max(0, int(item_points)) + spend_points
    earned = math.floor(Decimal(base_points) * Decimal(multiplier))
    return PointsBreakdown(
        item_points=max(0, int(item_points)),
        spend_points=spend_points,
        base_points=base_points,
        multiplier=Decimal(multiplier),
        earned=max(0, earned),
    )


def add_months_clamped(value: dt.datetime, months: int) -> dt.datetime:
    """Calendar-month addition clamped to the end of shorter months."""

    return value + relativedelta(months=months)


def is_birthday(birthday: dt.date | None, today: dt.date) -> bool:
    if birthday is None:
        return False
    if (birthday.month, birthday.day) == (today.month, today.day):
        return True
    # Feb 29 birthdays are celebrated on Feb 28 in common years
    leap_day = birthday.month == 2 and birthday.day == 29
    return leap_day and not calendar.isleap(today.year) and (today.month, today.day) == (2, 28)


def birthday_bonus_key(year: int) -> str:
    return f"birthday:{year}"


def birthday_bonus_description(year: int) -> str:
    return f"Birthday bonus {year}"


def has_received_birthday_bonus(transactions: Iterable[LedgerLine], year: int) -> bool:
    expected = birthday_bonus_description(year)
    return any(
        entry.type == LoyaltyTransactionType.BONUS and entry.description == expected
        for entry in transactions
    )


def calculate_loyalty_stats(transactions: Iterable[LedgerLine]) -> LoyaltyStats:
    totals = {kind: 0 for kind in LoyaltyTransactionType}
    count = 0
    for entry in transactions:
        totals[LoyaltyTransactionType(entry.type)] += int(entry.points)
        count += 1
    return LoyaltyStats(
        total_earned=totals[LoyaltyTransactionType.EARNED],
        total_redeemed=abs(totals[LoyaltyTransactionType.REDEEMED]),
        total_expired=abs(totals[LoyaltyTransactionType.EXPIRED]),
        total_bonus=totals[LoyaltyTransactionType.BONUS],
        total_adjustments=totals[LoyaltyTransactionType.ADJUSTMENT],
        transaction_count=count,
    )
