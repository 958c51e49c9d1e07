"""Loyalty ledger workflows: sale settlement, refund reversal and adjustments."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.core.clock import SalonClock, ensure_utc, utcnow
from aesthetech_api.db.transactions import lock_for_update, with_transaction
from aesthetech_api.domain.loyalty.tiers import (
    EXPIRING_TRANSACTION_TYPES,
    LoyaltyStats,
    LoyaltyTier,
    LoyaltyTransactionType,
    PointsBreakdown,
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
from aesthetech_api.domain.results import (
    ConsistencyViolation,
    EngineErrorKind,
    EngineFailure,
    EngineResult,
    ResourceNotFound,
    ValidationViolation,
)
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.client import Client
from aesthetech_api.models.invoice import Invoice, Refund
from aesthetech_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction
from aesthetech_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store


@dataclass(frozen=True)
class SettlementRequest:
    client_id: UUID
    invoice_number: str
    item_points: int
    amount_spent: Decimal
    points_to_redeem: int = 0
    sale_id: UUID | None = None
    invoice_id: UUID | None = None


@dataclass(frozen=True)
class SettlementResult:
    points_redeemed: int
    points_earned: int
    bonus_points: int
    balance_before: int
    balance_after: int
    tier_before: LoyaltyTier
    tier_after: LoyaltyTier
    breakdown: PointsBreakdown


@dataclass(frozen=True)
class ReversalResult:
    points_reversed: int
    theoretical_points: int
    balance_after: int
    tier_after: LoyaltyTier

    @property
    def clamped(self) -> bool:
        return self.points_reversed < self.theoretical_points


@dataclass(frozen=True)
class ClientLoyaltySnapshot:
    client_id: UUID
    balance: int
    tier: LoyaltyTier
    next_tier: LoyaltyTier | None
    points_to_next_tier: int | None
    tier_progress: int
    multiplier: Decimal
    expiring_soon: int
    next_expiry_at: dt.datetime | None
    birthday_bonus_received: bool
    stats: LoyaltyStats


def proportional_reversal(points_earned: int, refund_amount: Decimal, invoice_total: Decimal) -> int:
    """Points attributable to a refunded share of an invoice, rounded half up."""

    if points_earned <= 0 or invoice_total <= 0 or refund_amount <= 0:
        return 0
    share = Decimal(points_earned) * Decimal(refund_amount) / Decimal(invoice_total)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class LoyaltyService:
    """Owns every balance change; callers supply the surrounding transaction."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        now: Callable[[], dt.datetime] | None = None,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._now = now
        self._observability = observability or get_loyalty_store()

    def clock(self, settings: SettingsSnapshot) -> SalonClock:
        return SalonClock.for_zone(settings.timezone, source=self._now)

    async def get_account(self, client_id: UUID, *, for_update: bool = False) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.client_id == client_id)
        if for_update:
            stmt = lock_for_update(stmt)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, client_id: UUID) -> LoyaltyAccount:
        """Fetch the client's account under a row lock, creating it on first use."""

        account = await self.get_account(client_id, for_update=True)
        if account is not None:
            return account

        account = LoyaltyAccount(client_id=client_id, balance=0, tier=LoyaltyTier.SILVER)
        self._db.add(account)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            logger.warning("Detected race when creating loyalty account", client_id=str(client_id))
            raise ConsistencyViolation(
                "Loyalty account was created concurrently; retry the operation",
                client_id=str(client_id),
            ) from exc
        logger.info("Created loyalty account", client_id=str(client_id), account_id=str(account.id))
        return account

    async def record_ledger_entry(
        self,
        account: LoyaltyAccount,
        *,
        points: int,
        entry_type: LoyaltyTransactionType,
        description: str,
        expires_at: dt.datetime | None = None,
        sale_id: UUID | None = None,
        invoice_id: UUID | None = None,
        refund_id: UUID | None = None,
        bonus_key: str | None = None,
    ) -> LoyaltyTransaction:
        """Append a ledger row and move the cached balance by the same amount."""

        if points == 0:
            raise ValueError("Ledger entries require a non-zero amount")

        new_balance = int(account.balance or 0) + points
        if new_balance < 0:
            raise ConsistencyViolation(
                "Loyalty balance cannot go negative",
                balance=int(account.balance or 0),
                points=points,
            )

        entry = LoyaltyTransaction(
            account_id=account.id,
            client_id=account.client_id,
            points=points,
            type=entry_type,
            description=description,
            expires_at=expires_at,
            sale_id=sale_id,
            invoice_id=invoice_id,
            refund_id=refund_id,
            bonus_key=bonus_key,
            created_at=ensure_utc(self._now()) if self._now else utcnow(),
        )
        self._db.add(entry)
        account.balance = new_balance
        logger.debug(
            "Recorded loyalty ledger entry",
            account_id=str(account.id),
            points=points,
            entry_type=entry_type.value,
        )
        return entry

    @staticmethod
    def refresh_tier(account: LoyaltyAccount, settings: SettingsSnapshot) -> LoyaltyTier:
        account.tier = calculate_tier(int(account.balance or 0), settings.thresholds)
        return account.tier

    async def has_birthday_bonus(self, account: LoyaltyAccount, year: int) -> bool:
        stmt = select(func.count(LoyaltyTransaction.id)).where(
            LoyaltyTransaction.account_id == account.id,
            LoyaltyTransaction.bonus_key == birthday_bonus_key(year),
        )
        return bool((await self._db.execute(stmt)).scalar_one())

    async def settle_sale_points(
        self,
        request: SettlementRequest,
        settings: SettingsSnapshot,
    ) -> SettlementResult:
        """Debit the redemption, credit earned and birthday points, then retier once.

        Must run inside the caller's transaction; raises ``EngineFailure`` so the
        whole sale rolls back when the ledger cannot be settled.
        """

        if request.points_to_redeem < 0:
            raise ValidationViolation("Points to redeem cannot be negative")

        clock = self.clock(settings)
        account = await self.ensure_account(request.client_id)
        balance_before = int(account.balance or 0)
        if request.points_to_redeem > balance_before:
            raise ValidationViolation(
                "Insufficient loyalty points",
                available=balance_before,
                requested=request.points_to_redeem,
            )

        # The multiplier follows the tier the client held when the sale started
        tier_before = calculate_tier(balance_before, settings.thresholds)
        multiplier = get_tier_multiplier(tier_before, settings.multipliers)

        if request.points_to_redeem:
            await self.record_ledger_entry(
                account,
                points=-request.points_to_redeem,
                entry_type=LoyaltyTransactionType.REDEEMED,
                description=f"Redeemed for sale {request.invoice_number}",
                sale_id=request.sale_id,
                invoice_id=request.invoice_id,
            )

        expires_at = None
        if settings.points_expiry_enabled:
            expires_at = add_months_clamped(clock.local_now(), settings.points_expiry_months).astimezone(dt.timezone.utc)

        breakdown = calculate_points_earned(
            item_points=request.item_points,
            amount_spent=request.amount_spent,
            points_per_unit=settings.points_per_currency_unit,
            multiplier=multiplier,
        )
        if breakdown.earned:
            await self.record_ledger_entry(
                account,
                points=breakdown.earned,
                entry_type=LoyaltyTransactionType.EARNED,
                description=f"Earned from sale {request.invoice_number}",
                expires_at=expires_at,
                sale_id=request.sale_id,
                invoice_id=request.invoice_id,
            )

        bonus_points = await self._maybe_award_birthday_bonus(
            account,
            settings,
            clock,
            expires_at=expires_at,
            sale_id=request.sale_id,
            invoice_id=request.invoice_id,
        )

        tier_after = self.refresh_tier(account, settings)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            logger.warning("Birthday bonus recorded concurrently", client_id=str(request.client_id))
            raise ConsistencyViolation(
                "Birthday bonus was already awarded; retry the operation",
                client_id=str(request.client_id),
            ) from exc

        if tier_after != tier_before:
            logger.info(
                "Loyalty tier changed",
                client_id=str(request.client_id),
                tier_before=tier_before.value,
                tier_after=tier_after.value,
            )
        return SettlementResult(
            points_redeemed=request.points_to_redeem,
            points_earned=breakdown.earned,
            bonus_points=bonus_points,
            balance_before=balance_before,
            balance_after=int(account.balance),
            tier_before=tier_before,
            tier_after=tier_after,
            breakdown=breakdown,
        )

    async def _maybe_award_birthday_bonus(
        self,
        account: LoyaltyAccount,
        settings: SettingsSnapshot,
        clock: SalonClock,
        *,
        expires_at: dt.datetime | None,
        sale_id: UUID | None,
        invoice_id: UUID | None,
    ) -> int:
        if not settings.birthday_bonus_enabled or settings.birthday_bonus_points <= 0:
            return 0
        client = await self._db.get(Client, account.client_id)
        today = clock.today()
        if client is None or not is_birthday(client.birthday, today):
            return 0
        if await self.has_birthday_bonus(account, today.year):
            return 0

        await self.record_ledger_entry(
            account,
            points=settings.birthday_bonus_points,
            entry_type=LoyaltyTransactionType.BONUS,
            description=birthday_bonus_description(today.year),
            expires_at=expires_at,
            sale_id=sale_id,
            invoice_id=invoice_id,
            bonus_key=birthday_bonus_key(today.year),
        )
        logger.info("Awarded birthday bonus", client_id=str(account.client_id), year=today.year)
        return settings.birthday_bonus_points

    async def reverse_refund_points(
        self,
        invoice: Invoice,
        refund: Refund,
        settings: SettingsSnapshot,
    ) -> ReversalResult:
        """Take back the refunded share of earned points, clamped to what is left."""

        earned = int(invoice.points_earned or 0)
        theoretical = proportional_reversal(earned, Decimal(refund.amount), Decimal(invoice.total))

        stmt = select(func.coalesce(func.sum(Refund.points_reversed), 0)).where(
            Refund.invoice_id == invoice.id,
            Refund.id != refund.id,
        )
        already_reversed = int((await self._db.execute(stmt)).scalar_one())

        account = await self.ensure_account(invoice.client_id)
        reversible = max(0, min(theoretical, earned - already_reversed, int(account.balance or 0)))
        if reversible:
            await self.record_ledger_entry(
                account,
                points=-reversible,
                entry_type=LoyaltyTransactionType.ADJUSTMENT,
                description=f"Reversed for refund on {invoice.invoice_number}",
                sale_id=invoice.sale_id,
                invoice_id=invoice.id,
                refund_id=refund.id,
            )
        tier_after = self.refresh_tier(account, settings)
        await self._db.flush()

        result = ReversalResult(
            points_reversed=reversible,
            theoretical_points=theoretical,
            balance_after=int(account.balance),
            tier_after=tier_after,
        )
        if result.clamped:
            logger.warning(
                "Clamped refund point reversal",
                invoice_number=invoice.invoice_number,
                theoretical=theoretical,
                reversed=reversible,
            )
        return result

    async def adjust_points(
        self,
        client_id: UUID,
        *,
        points: int,
        reason: str,
        settings: SettingsSnapshot,
    ) -> EngineResult[LoyaltyTransaction]:
        """Manual staff correction recorded as an ADJUSTMENT entry."""

        if points == 0:
            return EngineResult.fail(EngineErrorKind.VALIDATION, "Adjustment must be a non-zero amount")
        if not reason or not reason.strip():
            return EngineResult.fail(EngineErrorKind.VALIDATION, "Adjustment reason is required")

        try:
            async with with_transaction(self._db):
                client = await self._db.get(Client, client_id)
                if client is None:
                    raise ResourceNotFound("Client not found", client_id=str(client_id))
                account = await self.ensure_account(client_id)
                entry = await self.record_ledger_entry(
                    account,
                    points=points,
                    entry_type=LoyaltyTransactionType.ADJUSTMENT,
                    description=reason.strip(),
                )
                self.refresh_tier(account, settings)
                await self._db.flush()
        except EngineFailure as failure:
            logger.info("Rejected loyalty adjustment", client_id=str(client_id), reason=failure.error.message)
            return EngineResult.from_failure(failure)

        self._observability.record_adjustment(points)
        logger.info("Adjusted loyalty points", client_id=str(client_id), points=points)
        return EngineResult.ok(entry)

    async def client_snapshot(self, client_id: UUID, settings: SettingsSnapshot) -> ClientLoyaltySnapshot | None:
        """Balance, tier progress and ledger totals; ``None`` for unknown clients."""

        client = await self._db.get(Client, client_id)
        if client is None:
            return None

        account = await self.get_account(client_id)
        balance = int(account.balance) if account is not None else 0
        tier = calculate_tier(balance, settings.thresholds)
        entries: Sequence[LoyaltyTransaction] = []
        expiring_soon = 0
        next_expiry_at: dt.datetime | None = None
        if account is not None:
            result = await self._db.execute(
                select(LoyaltyTransaction).where(LoyaltyTransaction.account_id == account.id)
            )
            entries = list(result.scalars().all())
            now = self.clock(settings).now()
            pending = [
                entry
                for entry in entries
                if entry.type in EXPIRING_TRANSACTION_TYPES
                and entry.expires_at is not None
                and ensure_utc(entry.expires_at) > now
            ]
            expiring_soon = min(balance, sum(entry.points for entry in pending))
            if pending:
                next_expiry_at = min(ensure_utc(entry.expires_at) for entry in pending)

        return ClientLoyaltySnapshot(
            client_id=client_id,
            balance=balance,
            tier=tier,
            next_tier=get_next_tier(tier),
            points_to_next_tier=get_points_to_next_tier(balance, settings.thresholds),
            tier_progress=get_tier_progress(balance, settings.thresholds),
            multiplier=get_tier_multiplier(tier, settings.multipliers),
            expiring_soon=expiring_soon,
            next_expiry_at=next_expiry_at,
            birthday_bonus_received=has_received_birthday_bonus(entries, self.clock(settings).today().year),
            stats=calculate_loyalty_stats(entries),
        )

    async def list_transactions(
        self,
        client_id: UUID,
        *,
        limit: int = 25,
        offset: int = 0,
    ) -> tuple[list[LoyaltyTransaction], int]:
        """Newest-first page of a client's ledger plus the total row count."""

        bounded_limit = max(1, min(limit, 100))
        filters = (LoyaltyTransaction.client_id == client_id,)
        total = (await self._db.execute(select(func.count(LoyaltyTransaction.id)).where(*filters))).scalar_one()
        stmt = (
            select(LoyaltyTransaction)
            .where(*filters)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .offset(max(0, offset))
            .limit(bounded_limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all()), int(total)


__all__ = [
    "ClientLoyaltySnapshot",
    "LoyaltyService",
    "ReversalResult",
    "SettlementRequest",
    "SettlementResult",
    "proportional_reversal",
]
