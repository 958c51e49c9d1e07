import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from aesthetech_api.domain.loyalty.tiers import LoyaltyTier, LoyaltyTransactionType, TierThresholds
from aesthetech_api.domain.results import ConsistencyViolation, EngineErrorKind, ValidationViolation
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models import Client
from aesthetech_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction
from aesthetech_api.services.loyalty import LoyaltyService, SettlementRequest


async def _ledger_sum(session, client_id) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(LoyaltyTransaction.points), 0)).where(LoyaltyTransaction.client_id == client_id)
    )
    return int(result.scalar_one())


async def _seed_balance(session, service: LoyaltyService, client_id, points: int) -> LoyaltyAccount:
    async with session.begin():
        account = await service.ensure_account(client_id)
        await service.record_ledger_entry(
            account,
            points=points,
            entry_type=LoyaltyTransactionType.ADJUSTMENT,
            description="Opening balance",
        )
    return account


@pytest.mark.asyncio
async def test_plain_sale_earns_points_at_silver_rate(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot()
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        async with session.begin():
            result = await service.settle_sale_points(
                SettlementRequest(
                    client_id=salon.client_id,
                    invoice_number="INV-202603-0001",
                    item_points=0,
                    amount_spent=Decimal("100.00"),
                ),
                settings,
            )

        assert result.points_earned == 100
        assert result.balance_before == 0
        assert result.balance_after == 100
        assert result.tier_after is LoyaltyTier.SILVER
        assert await _ledger_sum(session, salon.client_id) == 100


@pytest.mark.asyncio
async def test_crossing_gold_threshold_uses_pre_sale_multiplier(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot()
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        await _seed_balance(session, service, salon.client_id, 480)

        async with session.begin():
            result = await service.settle_sale_points(
                SettlementRequest(
                    client_id=salon.client_id,
                    invoice_number="INV-202603-0002",
                    item_points=0,
                    amount_spent=Decimal("30.00"),
                ),
                settings,
            )

        assert result.points_earned == 30
        assert result.balance_after == 510
        assert result.tier_before is LoyaltyTier.SILVER
        assert result.tier_after is LoyaltyTier.GOLD

        account = await service.get_account(salon.client_id)
        assert account.tier is LoyaltyTier.GOLD


@pytest.mark.asyncio
async def test_redemption_and_earning_are_separate_ledger_rows(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot(points_expiry_enabled=True, points_expiry_months=12)
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        await _seed_balance(session, service, salon.client_id, 200)

        async with session.begin():
            result = await service.settle_sale_points(
                SettlementRequest(
                    client_id=salon.client_id,
                    invoice_number="INV-202603-0003",
                    item_points=5,
                    amount_spent=Decimal("40.00"),
                    points_to_redeem=150,
                ),
                settings,
            )

        assert result.points_redeemed == 150
        assert result.points_earned == 45
        assert result.balance_after == 95

        rows = (
            await session.execute(
                select(LoyaltyTransaction)
                .where(LoyaltyTransaction.client_id == salon.client_id)
                .order_by(LoyaltyTransaction.points)
            )
        ).scalars().all()
        redeemed = [row for row in rows if row.type is LoyaltyTransactionType.REDEEMED]
        earned = [row for row in rows if row.type is LoyaltyTransactionType.EARNED]
        assert redeemed[0].points == -150
        assert redeemed[0].description == "Redeemed for sale INV-202603-0003"
        assert earned[0].description == "Earned from sale INV-202603-0003"
        assert earned[0].expires_at is not None
        assert earned[0].expires_at.date() == dt.date(2027, 3, 1)
        assert await _ledger_sum(session, salon.client_id) == 95


@pytest.mark.asyncio
async def test_redeeming_more_than_balance_is_rejected(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        await _seed_balance(session, service, salon.client_id, 20)

        with pytest.raises(ValidationViolation) as excinfo:
            async with session.begin():
                await service.settle_sale_points(
                    SettlementRequest(
                        client_id=salon.client_id,
                        invoice_number="INV-202603-0004",
                        item_points=0,
                        amount_spent=Decimal("10.00"),
                        points_to_redeem=50,
                    ),
                    SettingsSnapshot(),
                )

        assert excinfo.value.error.message == "Insufficient loyalty points"
        account = await service.get_account(salon.client_id)
        assert account.balance == 20


@pytest.mark.asyncio
async def test_birthday_bonus_awarded_once_per_year(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot(birthday_bonus_enabled=True, birthday_bonus_points=50)
    async with session_factory() as session:
        client = await session.get(Client, salon.client_id)
        client.birthday = dt.date(1990, fixed_now.month, fixed_now.day)
        await session.commit()

        service = LoyaltyService(session, now=lambda: fixed_now)
        bonuses = []
        for number in (1, 2):
            async with session.begin():
                result = await service.settle_sale_points(
                    SettlementRequest(
                        client_id=salon.client_id,
                        invoice_number=f"INV-202603-000{number}",
                        item_points=0,
                        amount_spent=Decimal("10.00"),
                    ),
                    settings,
                )
            bonuses.append(result.bonus_points)

        assert bonuses == [50, 0]
        bonus_rows = (
            await session.execute(
                select(LoyaltyTransaction).where(LoyaltyTransaction.type == LoyaltyTransactionType.BONUS)
            )
        ).scalars().all()
        assert len(bonus_rows) == 1
        assert bonus_rows[0].description == "Birthday bonus 2026"
        assert bonus_rows[0].bonus_key == "birthday:2026"
        assert (await service.client_snapshot(salon.client_id, settings)).birthday_bonus_received is True


@pytest.mark.asyncio
async def test_ledger_refuses_negative_balance(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        account = await _seed_balance(session, service, salon.client_id, 10)

        with pytest.raises(ConsistencyViolation):
            await service.record_ledger_entry(
                account,
                points=-11,
                entry_type=LoyaltyTransactionType.ADJUSTMENT,
                description="Too much",
            )
        with pytest.raises(ValueError):
            await service.record_ledger_entry(
                account,
                points=0,
                entry_type=LoyaltyTransactionType.ADJUSTMENT,
                description="Nothing",
            )
        assert account.balance == 10


@pytest.mark.asyncio
async def test_adjust_points_validates_and_records(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot(thresholds=TierThresholds(gold=100, platinum=200))
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)

        empty = await service.adjust_points(salon.client_id, points=0, reason="noop", settings=settings)
        assert empty.error.kind is EngineErrorKind.VALIDATION

        no_reason = await service.adjust_points(salon.client_id, points=10, reason="  ", settings=settings)
        assert no_reason.error.message == "Adjustment reason is required"

        created = await service.adjust_points(salon.client_id, points=150, reason="Goodwill", settings=settings)
        assert created.success
        assert created.unwrap().type is LoyaltyTransactionType.ADJUSTMENT

        overdraw = await service.adjust_points(salon.client_id, points=-500, reason="Oops", settings=settings)
        assert overdraw.error.kind is EngineErrorKind.CONSISTENCY

        account = await service.get_account(salon.client_id)
        assert account.balance == 150
        assert account.tier is LoyaltyTier.GOLD
        assert await _ledger_sum(session, salon.client_id) == account.balance


@pytest.mark.asyncio
async def test_adjust_points_for_unknown_client(session_factory, salon) -> None:
    async with session_factory() as session:
        result = await LoyaltyService(session).adjust_points(
            uuid4(), points=10, reason="Ghost", settings=SettingsSnapshot()
        )
    assert result.error.kind is EngineErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_client_snapshot_reports_expiring_points(session_factory, salon, fixed_now) -> None:
    settings = SettingsSnapshot()
    async with session_factory() as session:
        service = LoyaltyService(session, now=lambda: fixed_now)
        async with session.begin():
            account = await service.ensure_account(salon.client_id)
            await service.record_ledger_entry(
                account,
                points=120,
                entry_type=LoyaltyTransactionType.EARNED,
                description="Earned from sale INV-202602-0001",
                expires_at=fixed_now + dt.timedelta(days=10),
            )
            await service.record_ledger_entry(
                account,
                points=80,
                entry_type=LoyaltyTransactionType.EARNED,
                description="Earned from sale INV-202602-0002",
                expires_at=fixed_now + dt.timedelta(days=90),
            )
            await service.record_ledger_entry(
                account,
                points=30,
                entry_type=LoyaltyTransactionType.BONUS,
                description="Birthday bonus 2025",
                expires_at=fixed_now - dt.timedelta(days=1),
            )

        snapshot = await service.client_snapshot(salon.client_id, settings)
        assert snapshot.balance == 230
        assert snapshot.expiring_soon == 200
        assert snapshot.next_expiry_at == fixed_now + dt.timedelta(days=10)
        assert snapshot.points_to_next_tier == 270
        assert snapshot.stats.total_earned == 200
        assert snapshot.stats.total_bonus == 30
        assert snapshot.birthday_bonus_received is False

        entries, total = await service.list_transactions(salon.client_id, limit=1)
        assert total == 3
        assert len(entries) == 1

        assert await service.client_snapshot(salon.staff_id, settings) is None
