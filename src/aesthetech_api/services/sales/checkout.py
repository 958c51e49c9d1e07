"""Sale creation, completion into a paid invoice, and refunds."""

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

from aesthetech_api.db.transactions import lock_for_update, with_transaction
from aesthetech_api.domain.results import (
    EngineErrorKind,
    EngineFailure,
    EngineResult,
    ResourceNotFound,
    ValidationViolation,
)
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.catalog import Product, SalonService
from aesthetech_api.models.client import Client
from aesthetech_api.models.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod, Refund
from aesthetech_api.models.sale import DiscountType, Sale, SaleItem, SaleStatus
from aesthetech_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from aesthetech_api.services.loyalty.loyalty_service import (
    LoyaltyService,
    ReversalResult,
    SettlementRequest,
    SettlementResult,
)

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Integer cents; payment totals are compared on this scale."""

    return int(quantize_money(value) * 100)


def invoice_prefix(moment: dt.datetime) -> str:
    return f"INV-{moment:%Y%m}-"


def format_invoice_number(moment: dt.datetime, sequence: int) -> str:
    return f"{invoice_prefix(moment)}{sequence:04d}"


@dataclass(frozen=True)
class SaleLineRequest:
    service_id: UUID | None = None
    product_id: UUID | None = None
    quantity: int = 1


@dataclass(frozen=True)
class PaymentRequest:
    method: PaymentMethod
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    points_value: Decimal
    amount_after_points: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class CompletedSale:
    sale: Sale
    invoice: Invoice
    settlement: SettlementResult


@dataclass(frozen=True)
class RefundOutcome:
    refund: Refund
    invoice: Invoice
    reversal: ReversalResult


def compute_discount(subtotal: Decimal, discount_type: DiscountType | None, value: Decimal) -> Decimal:
    if discount_type is None or value <= 0:
        return Decimal("0.00")
    if discount_type is DiscountType.PERCENTAGE:
        if value > 100:
            raise ValidationViolation("Percentage discount cannot exceed 100")
        return quantize_money(subtotal * value / 100)
    return quantize_money(min(value, subtotal))


def compute_invoice_totals(
    final_amount: Decimal,
    *,
    points_to_redeem: int,
    settings: SettingsSnapshot,
) -> InvoiceTotals:
    """Redemption value comes off the sale amount before tax is applied."""

    subtotal = quantize_money(final_amount)
    points_value = quantize_money(Decimal(points_to_redeem) / Decimal(settings.redemption_rate))
    if points_value > subtotal:
        raise ValidationViolation(
            "Points value exceeds the sale amount",
            points_value=str(points_value),
            amount=str(subtotal),
        )
    amount_after_points = subtotal - points_value
    tax_amount = quantize_money(amount_after_points * settings.tax_rate / 100)
    return InvoiceTotals(
        subtotal=subtotal,
        points_value=points_value,
        amount_after_points=amount_after_points,
        tax_amount=tax_amount,
        total=amount_after_points + tax_amount,
    )


class CheckoutService:
    """Turns open sales into paid invoices and settles loyalty in the same transaction."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        now: Callable[[], dt.datetime] | None = None,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_loyalty_store()
        self._loyalty = LoyaltyService(db_session, now=now, observability=self._observability)

    async def create_sale(
        self,
        *,
        client_id: UUID,
        items: Sequence[SaleLineRequest],
        staff_id: UUID | None = None,
        discount_type: DiscountType | None = None,
        discount_value: Decimal = Decimal("0"),
        notes: str | None = None,
    ) -> EngineResult[Sale]:
        """Price the requested lines from the catalog and open a sale."""

        try:
            async with with_transaction(self._db):
                client = await self._db.get(Client, client_id)
                if client is None:
                    raise ResourceNotFound("Client not found", client_id=str(client_id))
                if not client.is_active:
                    raise ValidationViolation("Client is inactive")
                if not items:
                    raise ValidationViolation("A sale needs at least one item")

                lines = [await self._price_line(item) for item in items]
                subtotal = quantize_money(sum((line.line_total for line in lines), Decimal("0")))
                discount_amount = compute_discount(subtotal, discount_type, Decimal(discount_value))
                sale = Sale(
                    client_id=client_id,
                    staff_id=staff_id,
                    status=SaleStatus.OPEN,
                    subtotal=subtotal,
                    discount_type=discount_type,
                    discount_value=Decimal(discount_value),
                    discount_amount=discount_amount,
                    final_amount=max(Decimal("0.00"), subtotal - discount_amount),
                    notes=notes,
                    items=lines,
                )
                self._db.add(sale)
                await self._db.flush()
        except EngineFailure as failure:
            logger.info("Rejected sale", client_id=str(client_id), reason=failure.error.message)
            return EngineResult.from_failure(failure)

        logger.info("Opened sale", sale_id=str(sale.id), final_amount=str(sale.final_amount))
        return EngineResult.ok(sale)

    async def _price_line(self, item: SaleLineRequest) -> SaleItem:
        if item.quantity < 1:
            raise ValidationViolation("Item quantity must be at least 1")
        if (item.service_id is None) == (item.product_id is None):
            raise ValidationViolation("Each item must reference exactly one service or product")

        catalog_entry: SalonService | Product | None
        if item.service_id is not None:
            catalog_entry = await self._db.get(SalonService, item.service_id)
        else:
            catalog_entry = await self._db.get(Product, item.product_id)
        if catalog_entry is None or not catalog_entry.is_active:
            raise ValidationViolation(
                "Catalog item not found or inactive",
                service_id=str(item.service_id) if item.service_id else None,
                product_id=str(item.product_id) if item.product_id else None,
            )

        unit_price = quantize_money(Decimal(catalog_entry.price))
        return SaleItem(
            service_id=item.service_id,
            product_id=item.product_id,
            description=catalog_entry.name,
            quantity=item.quantity,
            unit_price=unit_price,
            unit_points=int(catalog_entry.loyalty_points or 0),
            line_total=unit_price * item.quantity,
        )

    async def _next_invoice_number(self, issued_at: dt.datetime) -> str:
        prefix = invoice_prefix(issued_at)
        stmt = select(func.count(Invoice.id)).where(Invoice.invoice_number.like(f"{prefix}%"))
        count = (await self._db.execute(stmt)).scalar_one()
        return format_invoice_number(issued_at, int(count) + 1)

    async def complete_sale(
        self,
        sale_id: UUID,
        *,
        payments: Sequence[PaymentRequest],
        settings: SettingsSnapshot,
        points_to_redeem: int = 0,
    ) -> EngineResult[CompletedSale]:
        """Issue the invoice, record payments and settle points atomically.

        Any validation or ledger failure rolls back the invoice as well; a
        unique-key collision (concurrent invoice number or birthday bonus) is
        reported as a consistency failure the caller may retry.
        """

        clock = self._loyalty.clock(settings)
        try:
            async with with_transaction(self._db):
                sale = (
                    await self._db.execute(lock_for_update(select(Sale).where(Sale.id == sale_id)))
                ).scalar_one_or_none()
                if sale is None:
                    raise ResourceNotFound("Sale not found", sale_id=str(sale_id))
                existing = await self._db.execute(select(Invoice.id).where(Invoice.sale_id == sale_id))
                if sale.status is SaleStatus.COMPLETED or existing.first() is not None:
                    raise ValidationViolation("Sale already has an invoice", sale_id=str(sale_id))
                if sale.status is SaleStatus.CANCELLED:
                    raise ValidationViolation("Cannot complete a cancelled sale", sale_id=str(sale_id))
                if points_to_redeem < 0:
                    raise ValidationViolation("Points to redeem cannot be negative")

                totals = compute_invoice_totals(
                    Decimal(sale.final_amount),
                    points_to_redeem=points_to_redeem,
                    settings=settings,
                )
                if not payments:
                    raise ValidationViolation("At least one payment is required")
                if any(Decimal(payment.amount) <= 0 for payment in payments):
                    raise ValidationViolation("Payment amounts must be positive")
                tendered = sum((quantize_money(Decimal(payment.amount)) for payment in payments), Decimal("0"))
                if to_cents(tendered) != to_cents(totals.total):
                    raise ValidationViolation(
                        f"Payment total ({tendered:.2f}) doesn't match invoice total ({totals.total:.2f})",
                        tendered=str(tendered),
                        total=str(totals.total),
                    )

                issued_at = clock.now()
                invoice = Invoice(
                    invoice_number=await self._next_invoice_number(clock.local_now()),
                    sale_id=sale.id,
                    client_id=sale.client_id,
                    status=InvoiceStatus.PAID,
                    subtotal=totals.subtotal,
                    points_redeemed=points_to_redeem,
                    points_value=totals.points_value,
                    amount_after_points=totals.amount_after_points,
                    tax_rate=settings.tax_rate,
                    tax_amount=totals.tax_amount,
                    total=totals.total,
                    refunded_amount=Decimal("0.00"),
                    issued_at=issued_at,
                    payments=[
                        Payment(
                            method=payment.method,
                            amount=quantize_money(Decimal(payment.amount)),
                            reference=payment.reference,
                        )
                        for payment in payments
                    ],
                    refunds=[],
                )
                self._db.add(invoice)
                await self._db.flush()

                settlement = await self._loyalty.settle_sale_points(
                    SettlementRequest(
                        client_id=sale.client_id,
                        invoice_number=invoice.invoice_number,
                        item_points=sum(int(item.unit_points) * int(item.quantity) for item in sale.items),
                        amount_spent=Decimal(sale.final_amount),
                        points_to_redeem=points_to_redeem,
                        sale_id=sale.id,
                        invoice_id=invoice.id,
                    ),
                    settings,
                )
                invoice.points_earned = settlement.points_earned
                invoice.bonus_points = settlement.bonus_points
                sale.status = SaleStatus.COMPLETED
                sale.completed_at = issued_at
                await self._db.flush()
        except EngineFailure as failure:
            self._observability.record_settlement_failure(failure.error.kind.value)
            logger.info("Rejected sale completion", sale_id=str(sale_id), reason=failure.error.message)
            return EngineResult.from_failure(failure)
        except IntegrityError:
            self._observability.record_settlement_failure(EngineErrorKind.CONSISTENCY.value)
            logger.warning("Sale completion collided with a concurrent write", sale_id=str(sale_id))
            return EngineResult.fail(
                EngineErrorKind.CONSISTENCY,
                "Sale completion conflicted with a concurrent update; retry",
                sale_id=str(sale_id),
            )

        self._observability.record_sale_settled(
            earned=settlement.points_earned,
            redeemed=settlement.points_redeemed,
            bonus=settlement.bonus_points,
        )
        logger.info(
            "Completed sale",
            sale_id=str(sale_id),
            invoice_number=invoice.invoice_number,
            total=str(invoice.total),
            points_earned=settlement.points_earned,
            points_redeemed=settlement.points_redeemed,
            bonus_points=settlement.bonus_points,
        )
        return EngineResult.ok(CompletedSale(sale=sale, invoice=invoice, settlement=settlement))

    async def quick_sale(
        self,
        *,
        client_id: UUID,
        items: Sequence[SaleLineRequest],
        payments: Sequence[PaymentRequest],
        settings: SettingsSnapshot,
        staff_id: UUID | None = None,
        discount_type: DiscountType | None = None,
        discount_value: Decimal = Decimal("0"),
        points_to_redeem: int = 0,
        notes: str | None = None,
    ) -> EngineResult[CompletedSale]:
        """Open and complete a sale in one call.

        A draft whose completion is rejected is cancelled so it does not
        linger as an open sale.
        """

        opened = await self.create_sale(
            client_id=client_id,
            items=items,
            staff_id=staff_id,
            discount_type=discount_type,
            discount_value=discount_value,
            notes=notes,
        )
        if opened.error is not None:
            return EngineResult(error=opened.error)

        sale = opened.unwrap()
        completed = await self.complete_sale(
            sale.id,
            payments=payments,
            settings=settings,
            points_to_redeem=points_to_redeem,
        )
        if completed.error is not None:
            async with with_transaction(self._db):
                draft = await self._db.get(Sale, sale.id)
                if draft is not None and draft.status is SaleStatus.OPEN:
                    draft.status = SaleStatus.CANCELLED
            logger.info("Cancelled quick sale draft", sale_id=str(sale.id), reason=completed.error.message)
        return completed

    async def refund_invoice(
        self,
        invoice_id: UUID,
        *,
        amount: Decimal,
        settings: SettingsSnapshot,
        reason: str | None = None,
    ) -> EngineResult[RefundOutcome]:
        """Record a full or partial refund and reverse the matching share of points."""

        refund_amount = quantize_money(Decimal(amount))
        try:
            async with with_transaction(self._db):
                invoice = (
                    await self._db.execute(lock_for_update(select(Invoice).where(Invoice.id == invoice_id)))
                ).scalar_one_or_none()
                if invoice is None:
                    raise ResourceNotFound("Invoice not found", invoice_id=str(invoice_id))
                if refund_amount <= 0:
                    raise ValidationViolation("Refund amount must be positive")
                refundable = quantize_money(Decimal(invoice.total) - Decimal(invoice.refunded_amount or 0))
                if to_cents(refund_amount) > to_cents(refundable):
                    raise ValidationViolation(
                        "Refund amount exceeds the refundable balance",
                        refundable=str(refundable),
                    )

                refund = Refund(invoice_id=invoice.id, amount=refund_amount, reason=reason, points_reversed=0)
                self._db.add(refund)
                await self._db.flush()

                reversal = await self._loyalty.reverse_refund_points(invoice, refund, settings)
                refund.points_reversed = reversal.points_reversed
                invoice.refunded_amount = quantize_money(Decimal(invoice.refunded_amount or 0) + refund_amount)
                fully_refunded = to_cents(invoice.refunded_amount) >= to_cents(Decimal(invoice.total))
                invoice.status = InvoiceStatus.REFUNDED if fully_refunded else InvoiceStatus.PARTIALLY_REFUNDED
                await self._db.flush()
        except EngineFailure as failure:
            logger.info("Rejected refund", invoice_id=str(invoice_id), reason=failure.error.message)
            return EngineResult.from_failure(failure)

        self._observability.record_refund_reversal(
            reversed_points=reversal.points_reversed,
            clamped=reversal.clamped,
        )
        logger.info(
            "Recorded refund",
            invoice_number=invoice.invoice_number,
            amount=str(refund_amount),
            points_reversed=reversal.points_reversed,
            status=invoice.status.value,
        )
        return EngineResult.ok(RefundOutcome(refund=refund, invoice=invoice, reversal=reversal))


__all__ = [
    "CompletedSale",
    "CheckoutService",
    "InvoiceTotals",
    "PaymentRequest",
    "RefundOutcome",
    "SaleLineRequest",
    "compute_discount",
    "compute_invoice_totals",
    "format_invoice_number",
    "quantize_money",
    "to_cents",
]
