"""Salon business settings consumed by the loyalty and recurrence engines."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.api.dependencies.results import unwrap_or_raise
from aesthetech_api.db.session import get_session
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.services.settings_provider import SettingsProvider


router = APIRouter(prefix="/settings", tags=["settings"])

# camelCase request keys mapped onto settings row columns
_FIELD_MAP = {
    "salonName": "salon_name",
    "timezone": "timezone",
    "businessHoursStart": "business_hours_start",
    "businessHoursEnd": "business_hours_end",
    "taxRate": "tax_rate",
    "pointsPerCurrencyUnit": "points_per_currency_unit",
    "redemptionRate": "redemption_rate",
    "goldThreshold": "gold_threshold",
    "platinumThreshold": "platinum_threshold",
    "silverMultiplier": "silver_multiplier",
    "goldMultiplier": "gold_multiplier",
    "platinumMultiplier": "platinum_multiplier",
    "pointsExpiryEnabled": "points_expiry_enabled",
    "pointsExpiryMonths": "points_expiry_months",
    "birthdayBonusEnabled": "birthday_bonus_enabled",
    "birthdayBonusPoints": "birthday_bonus_points",
}


class SettingsResponse(BaseModel):
    timezone: str
    businessHoursStart: str
    businessHoursEnd: str
    taxRate: Decimal
    pointsPerCurrencyUnit: Decimal
    redemptionRate: int
    goldThreshold: int
    platinumThreshold: int
    silverMultiplier: Decimal
    goldMultiplier: Decimal
    platinumMultiplier: Decimal
    pointsExpiryEnabled: bool
    pointsExpiryMonths: int
    birthdayBonusEnabled: bool
    birthdayBonusPoints: int


class SettingsUpdateRequest(BaseModel):
    salonName: Optional[str] = None
    timezone: Optional[str] = None
    businessHoursStart: Optional[str] = None
    businessHoursEnd: Optional[str] = None
    taxRate: Optional[Decimal] = None
    pointsPerCurrencyUnit: Optional[Decimal] = None
    redemptionRate: Optional[int] = None
    goldThreshold: Optional[int] = None
    platinumThreshold: Optional[int] = None
    silverMultiplier: Optional[Decimal] = None
    goldMultiplier: Optional[Decimal] = None
    platinumMultiplier: Optional[Decimal] = None
    pointsExpiryEnabled: Optional[bool] = None
    pointsExpiryMonths: Optional[int] = None
    birthdayBonusEnabled: Optional[bool] = None
    birthdayBonusPoints: Optional[int] = None


class SettingsUpdateResponse(BaseModel):
    settings: SettingsResponse
    tiersRecalculated: int = Field(..., description="Loyalty accounts whose tier changed")


def _serialize(snapshot: SettingsSnapshot) -> SettingsResponse:
    return SettingsResponse(
        timezone=snapshot.timezone,
        businessHoursStart=snapshot.business_hours_start,
        businessHoursEnd=snapshot.business_hours_end,
        taxRate=snapshot.tax_rate,
        pointsPerCurrencyUnit=snapshot.points_per_currency_unit,
        redemptionRate=snapshot.redemption_rate,
        goldThreshold=snapshot.thresholds.gold,
        platinumThreshold=snapshot.thresholds.platinum,
        silverMultiplier=snapshot.multipliers.silver,
        goldMultiplier=snapshot.multipliers.gold,
        platinumMultiplier=snapshot.multipliers.platinum,
        pointsExpiryEnabled=snapshot.points_expiry_enabled,
        pointsExpiryMonths=snapshot.points_expiry_months,
        birthdayBonusEnabled=snapshot.birthday_bonus_enabled,
        birthdayBonusPoints=snapshot.birthday_bonus_points,
    )


@router.get("", response_model=SettingsResponse)
async def read_settings(db: AsyncSession = Depends(get_session)) -> SettingsResponse:
    return _serialize(await SettingsProvider(db).snapshot())


@router.put("", response_model=SettingsUpdateResponse)
async def update_settings(
    payload: SettingsUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> SettingsUpdateResponse:
    """Apply a partial update; changing thresholds recalculates every stored tier."""

    changes: dict[str, Any] = {
        _FIELD_MAP[key]: value for key, value in payload.model_dump(exclude_none=True).items()
    }
    update = unwrap_or_raise(await SettingsProvider(db).update(changes))
    return SettingsUpdateResponse(settings=_serialize(update.snapshot), tiersRecalculated=update.tiers_recalculated)
