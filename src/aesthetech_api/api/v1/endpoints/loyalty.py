"""Client loyalty balances, ledger history and the expiry trigger."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.api.dependencies.results import unwrap_or_raise
from aesthetech_api.api.dependencies.security import require_cron_secret
from aesthetech_api.api.dependencies.settings import get_settings_snapshot
from aesthetech_api.core.clock import ensure_utc
from aesthetech_api.db.session import get_session
from aesthetech_api.domain.loyalty.tiers import LoyaltyTier, LoyaltyTransactionType
from aesthetech_api.domain.results import EngineErrorKind
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.loyalty import LoyaltyTransaction
from aesthetech_api.services.loyalty import LoyaltyService, PointsExpiryService


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class LoyaltyStatsResponse(BaseModel):
    totalEarned: int
    totalRedeemed: int
    totalExpired: int
    totalBonus: int
    totalAdjustments: int
    transactionCount: int


class ClientLoyaltyResponse(BaseModel):
    clientId: UUID
    balance: int
    tier: LoyaltyTier
    nextTier: Optional[LoyaltyTier] = None
    pointsToNextTier: Optional[int] = None
    tierProgress: int = Field(..., ge=0, le=100)
    multiplier: Decimal
    expiringSoon: int
    nextExpiryAt: Optional[dt.datetime] = None
    birthdayBonusReceived: bool = False
    stats: LoyaltyStatsResponse


class LoyaltyTransactionResponse(BaseModel):
    id: UUID
    points: int
    type: LoyaltyTransactionType
    description: Optional[str] = None
    expiresAt: Optional[dt.datetime] = None
    saleId: Optional[UUID] = None
    invoiceId: Optional[UUID] = None
    createdAt: dt.datetime


class LoyaltyTransactionPage(BaseModel):
    items: List[LoyaltyTransactionResponse]
    total: int
    limit: int
    offset: int


class LoyaltyAdjustmentRequest(BaseModel):
    points: int = Field(..., description="Signed number of points to add or remove")
    reason: str = Field(..., min_length=1, max_length=500)


class ExpiryRunResponse(BaseModel):
    clientsAffected: int
    totalPointsExpired: int
    transactionsProcessed: int = 0
    skipped: bool = False
    reason: Optional[str] = None


def _serialize_transaction(entry: LoyaltyTransaction) -> LoyaltyTransactionResponse:
    return LoyaltyTransactionResponse(
        id=entry.id,
        points=entry.points,
        type=entry.type,
        description=entry.description,
        expiresAt=ensure_utc(entry.expires_at) if entry.expires_at else None,
        saleId=entry.sale_id,
        invoiceId=entry.invoice_id,
        createdAt=ensure_utc(entry.created_at),
    )


@router.get("/clients/{client_id}", response_model=ClientLoyaltyResponse)
async def read_client_loyalty(
    client_id: UUID,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> ClientLoyaltyResponse:
    snapshot = await LoyaltyService(db).client_snapshot(client_id, salon_settings)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return ClientLoyaltyResponse(
        clientId=snapshot.client_id,
        balance=snapshot.balance,
        tier=snapshot.tier,
        nextTier=snapshot.next_tier,
        pointsToNextTier=snapshot.points_to_next_tier,
        tierProgress=snapshot.tier_progress,
        multiplier=snapshot.multiplier,
        expiringSoon=snapshot.expiring_soon,
        nextExpiryAt=snapshot.next_expiry_at,
        birthdayBonusReceived=snapshot.birthday_bonus_received,
        stats=LoyaltyStatsResponse(**snapshot.stats.as_dict()),
    )


@router.get("/clients/{client_id}/transactions", response_model=LoyaltyTransactionPage)
async def list_client_transactions(
    client_id: UUID,
    limit: int = Query(25, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyTransactionPage:
    entries, total = await LoyaltyService(db).list_transactions(client_id, limit=limit, offset=offset)
    return LoyaltyTransactionPage(
        items=[_serialize_transaction(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/clients/{client_id}/adjustments",
    response_model=LoyaltyTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_client_points(
    client_id: UUID,
    payload: LoyaltyAdjustmentRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> LoyaltyTransactionResponse:
    result = await LoyaltyService(db).adjust_points(
        client_id,
        points=payload.points,
        reason=payload.reason,
        settings=salon_settings,
    )
    return _serialize_transaction(unwrap_or_raise(result))


@router.post(
    "/expiry/run",
    response_model=ExpiryRunResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_points_expiry(
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> ExpiryRunResponse:
    """Cron entry point; overlapping calls report a skipped run instead of failing."""

    result = await PointsExpiryService(db).run(salon_settings)
    if result.error is not None and result.error.kind is EngineErrorKind.CONCURRENCY:
        logger.info("Points expiry already in progress; skipping request")
        return ExpiryRunResponse(clientsAffected=0, totalPointsExpired=0, skipped=True, reason="locked")
    outcome = unwrap_or_raise(result)
    return ExpiryRunResponse(**outcome.as_dict())
