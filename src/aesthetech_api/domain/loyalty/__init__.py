from .tiers import (
    LoyaltyStats,
    LoyaltyTier,
    LoyaltyTransactionType,
    PointsBreakdown,
    TierMultipliers,
    TierThresholds,
    add_months_clamped,
    birthday_bonus_description,
    birthday_bonus_key,
    calculate_loyalty_stats,
    calculate_points_earned,
    calculate_tier,
    get_next_tier,
    get_points_to_next_tier,
    get_tier_multiplier,
    get_tier_progress,
    has_received_birthday_bonus,
    is_birthday,
)

__all__ = [
    "LoyaltyStats",
    "LoyaltyTier",
    "LoyaltyTransactionType",
    "PointsBreakdown",
    "TierMultipliers",
    "TierThresholds",
    "add_months_clamped",
    "birthday_bonus_description",
    "birthday_bonus_key",
    "calculate_loyalty_stats",
    "calculate_points_earned",
    "calculate_tier",
    "get_next_tier",
    "get_points_to_next_tier",
    "get_tier_multiplier",
    "get_tier_progress",
    "has_received_birthday_bonus",
    "is_birthday",
]
