"""Reads and writes the salon settings row as immutable snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.core.settings import settings as app_settings
from aesthetech_api.db.transactions import lock_for_update, with_transaction
from aesthetech_api.domain.loyalty.tiers import TierMultipliers, TierThresholds, calculate_tier
from aesthetech_api.domain.results import EngineErrorKind, EngineFailure, EngineResult, ValidationViolation
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.loyalty import LoyaltyAccount
from aesthetech_api.models.settings import SALON_SETTINGS_ID, SalonSettings

# Writable fields; everything else on the row is managed internally
EDITABLE_FIELDS = frozenset(
    {
        "salon_name",
        "timezone",
        "business_hours_start",
        "business_hours_end",
        "tax_rate",
        "points_per_currency_unit",
        "redemption_rate",
        "gold_threshold",
        "platinum_threshold",
        "silver_multiplier",
        "gold_multiplier",
        "platinum_multiplier",
        "points_expiry_enabled",
        "points_expiry_months",
        "birthday_bonus_enabled",
        "birthday_bonus_points",
    }
)


@dataclass(frozen=True)
class SettingsUpdate:
    snapshot: SettingsSnapshot
    tiers_recalculated: int


def snapshot_from_row(row: SalonSettings) -> SettingsSnapshot:
    return SettingsSnapshot(
        thresholds=TierThresholds(gold=int(row.gold_threshold), platinum=int(row.platinum_threshold)),
        multipliers=TierMultipliers(
            silver=Decimal(str(row.silver_multiplier)),
            gold=Decimal(str(row.gold_multiplier)),
            platinum=Decimal(str(row.platinum_multiplier)),
        ),
        points_per_currency_unit=Decimal(str(row.points_per_currency_unit)),
        redemption_rate=int(row.redemption_rate),
        tax_rate=Decimal(str(row.tax_rate)),
        points_expiry_enabled=bool(row.points_expiry_enabled),
        points_expiry_months=int(row.points_expiry_months),
        birthday_bonus_enabled=bool(row.birthday_bonus_enabled),
        birthday_bonus_points=int(row.birthday_bonus_points),
        timezone=row.timezone,
        business_hours_start=row.business_hours_start,
        business_hours_end=row.business_hours_end,
    )


def _apply_to_row(row: SalonSettings, values: Mapping[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


class SettingsProvider:
    """Settings collaborator consumed by the loyalty and recurrence services."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def _load_row(self, *, for_update: bool = False) -> SalonSettings | None:
        stmt = select(SalonSettings).where(SalonSettings.id == SALON_SETTINGS_ID)
        if for_update:
            stmt = lock_for_update(stmt)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _ensure_row(self) -> SalonSettings:
        row = await self._load_row()
        if row is not None:
            return row
        try:
            async with with_transaction(self._db):
                row = SalonSettings(
                    id=SALON_SETTINGS_ID,
                    timezone=app_settings.salon_timezone,
                    business_hours_start=app_settings.business_hours_start,
                    business_hours_end=app_settings.business_hours_end,
                )
                self._db.add(row)
                await self._db.flush()
        except IntegrityError:
            logger.warning("Detected race when creating salon settings")
            row = await self._load_row()
            if row is None:
                raise
            return row
        logger.info("Created default salon settings", timezone=row.timezone)
        return row

    async def snapshot(self) -> SettingsSnapshot:
        """Current settings; the default row is created on first read."""

        return snapshot_from_row(await self._ensure_row())

    async def update(self, changes: Mapping[str, Any]) -> EngineResult[SettingsUpdate]:
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            return EngineResult.fail(
                EngineErrorKind.VALIDATION,
                "Unknown settings fields",
                fields=unknown,
            )

        await self._ensure_row()
        try:
            async with with_transaction(self._db):
                row = await self._load_row(for_update=True)
                previous = snapshot_from_row(row)
                _apply_to_row(row, changes)
                proposed = snapshot_from_row(row)
                errors = proposed.validate()
                if errors:
                    raise ValidationViolation(errors[0], errors=errors)

                recalculated = 0
                if proposed.thresholds != previous.thresholds:
                    recalculated = await self._recalculate_tiers(proposed.thresholds)
                await self._db.flush()
        except EngineFailure as failure:
            logger.info("Rejected salon settings update", reason=failure.error.message)
            return EngineResult.from_failure(failure)

        logger.info(
            "Updated salon settings",
            fields=sorted(changes),
            tiers_recalculated=recalculated,
        )
        return EngineResult.ok(SettingsUpdate(snapshot=proposed, tiers_recalculated=recalculated))

    async def _recalculate_tiers(self, thresholds: TierThresholds) -> int:
        result = await self._db.execute(lock_for_update(select(LoyaltyAccount)))
        changed = 0
        for account in result.scalars():
            tier = calculate_tier(int(account.balance), thresholds)
            if account.tier != tier:
                account.tier = tier
                changed += 1
        return changed


__all__ = ["EDITABLE_FIELDS", "SettingsProvider", "SettingsUpdate", "snapshot_from_row"]
