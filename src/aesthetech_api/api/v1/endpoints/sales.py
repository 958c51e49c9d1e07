"""Checkout: open sales, issue invoices and record refunds."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.api.dependencies.results import unwrap_or_raise
from aesthetech_api.api.dependencies.settings import get_settings_snapshot
from aesthetech_api.core.clock import ensure_utc
from aesthetech_api.db.session import get_session
from aesthetech_api.domain.loyalty.tiers import LoyaltyTier
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.invoice import Invoice, InvoiceStatus, PaymentMethod
from aesthetech_api.models.sale import DiscountType, Sale, SaleStatus
from aesthetech_api.services.sales import CheckoutService, CompletedSale, PaymentRequest, SaleLineRequest


router = APIRouter(tags=["sales"])


class SaleLineInput(BaseModel):
    serviceId: Optional[UUID] = None
    productId: Optional[UUID] = None
    quantity: int = Field(1, ge=1)


class SaleCreateRequest(BaseModel):
    clientId: UUID
    staffId: Optional[UUID] = None
    items: List[SaleLineInput] = Field(..., min_length=1)
    discountType: Optional[DiscountType] = None
    discountValue: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None


class SaleLineResponse(BaseModel):
    id: UUID
    description: str
    quantity: int
    unitPrice: Decimal
    unitPoints: int
    lineTotal: Decimal


class SaleResponse(BaseModel):
    id: UUID
    clientId: UUID
    staffId: Optional[UUID] = None
    status: SaleStatus
    subtotal: Decimal
    discountAmount: Decimal
    finalAmount: Decimal
    items: List[SaleLineResponse]


class PaymentInput(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    reference: Optional[str] = None


class SaleCompleteRequest(BaseModel):
    payments: List[PaymentInput] = Field(..., min_length=1)
    pointsToRedeem: int = Field(0, ge=0)


class QuickSaleRequest(SaleCreateRequest):
    payments: List[PaymentInput] = Field(..., min_length=1)
    pointsToRedeem: int = Field(0, ge=0)


class InvoiceResponse(BaseModel):
    id: UUID
    invoiceNumber: str
    saleId: UUID
    clientId: UUID
    status: InvoiceStatus
    subtotal: Decimal
    pointsRedeemed: int
    pointsValue: Decimal
    amountAfterPoints: Decimal
    taxAmount: Decimal
    total: Decimal
    pointsEarned: int
    bonusPoints: int
    refundedAmount: Decimal
    issuedAt: dt.datetime


class SaleCompletionResponse(BaseModel):
    invoice: InvoiceResponse
    balanceBefore: int
    balanceAfter: int
    tierBefore: LoyaltyTier
    tierAfter: LoyaltyTier
    tierChanged: bool


class RefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    id: UUID
    amount: Decimal
    pointsReversed: int
    invoice: InvoiceResponse


def _serialize_sale(sale: Sale) -> SaleResponse:
    return SaleResponse(
        id=sale.id,
        clientId=sale.client_id,
        staffId=sale.staff_id,
        status=sale.status,
        subtotal=sale.subtotal,
        discountAmount=sale.discount_amount,
        finalAmount=sale.final_amount,
        items=[
            SaleLineResponse(
                id=item.id,
                description=item.description,
                quantity=item.quantity,
                unitPrice=item.unit_price,
                unitPoints=item.unit_points,
                lineTotal=item.line_total,
            )
            for item in sale.items
        ],
    )


def _serialize_invoice(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        invoiceNumber=invoice.invoice_number,
        saleId=invoice.sale_id,
        clientId=invoice.client_id,
        status=invoice.status,
        subtotal=invoice.subtotal,
        pointsRedeemed=invoice.points_redeemed,
        pointsValue=invoice.points_value,
        amountAfterPoints=invoice.amount_after_points,
        taxAmount=invoice.tax_amount,
        total=invoice.total,
        pointsEarned=invoice.points_earned,
        bonusPoints=invoice.bonus_points,
        refundedAmount=invoice.refunded_amount,
        issuedAt=ensure_utc(invoice.issued_at),
    )


def _serialize_completion(completed: CompletedSale) -> SaleCompletionResponse:
    settlement = completed.settlement
    return SaleCompletionResponse(
        invoice=_serialize_invoice(completed.invoice),
        balanceBefore=settlement.balance_before,
        balanceAfter=settlement.balance_after,
        tierBefore=settlement.tier_before,
        tierAfter=settlement.tier_after,
        tierChanged=settlement.tier_before is not settlement.tier_after,
    )


def _line_requests(lines: List[SaleLineInput]) -> List[SaleLineRequest]:
    return [
        SaleLineRequest(service_id=line.serviceId, product_id=line.productId, quantity=line.quantity)
        for line in lines
    ]


def _payment_requests(payments: List[PaymentInput]) -> List[PaymentRequest]:
    return [
        PaymentRequest(method=payment.method, amount=payment.amount, reference=payment.reference)
        for payment in payments
    ]


@router.post("/sales", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> SaleResponse:
    result = await CheckoutService(db).create_sale(
        client_id=payload.clientId,
        staff_id=payload.staffId,
        items=_line_requests(payload.items),
        discount_type=payload.discountType,
        discount_value=payload.discountValue,
        notes=payload.notes,
    )
    return _serialize_sale(unwrap_or_raise(result))


@router.post("/sales/{sale_id}/complete", response_model=SaleCompletionResponse)
async def complete_sale(
    sale_id: UUID,
    payload: SaleCompleteRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SaleCompletionResponse:
    """Issue the invoice and settle loyalty points in one transaction."""

    result = await CheckoutService(db).complete_sale(
        sale_id,
        payments=_payment_requests(payload.payments),
        points_to_redeem=payload.pointsToRedeem,
        settings=salon_settings,
    )
    return _serialize_completion(unwrap_or_raise(result))


@router.post("/sales/quick", response_model=SaleCompletionResponse, status_code=status.HTTP_201_CREATED)
async def quick_sale(
    payload: QuickSaleRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SaleCompletionResponse:
    """Open and pay a sale in a single request."""

    result = await CheckoutService(db).quick_sale(
        client_id=payload.clientId,
        staff_id=payload.staffId,
        items=_line_requests(payload.items),
        discount_type=payload.discountType,
        discount_value=payload.discountValue,
        notes=payload.notes,
        payments=_payment_requests(payload.payments),
        points_to_redeem=payload.pointsToRedeem,
        settings=salon_settings,
    )
    return _serialize_completion(unwrap_or_raise(result))


@router.post(
    "/invoices/{invoice_id}/refunds",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
)
async def refund_invoice(
    invoice_id: UUID,
    payload: RefundRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> RefundResponse:
    result = await CheckoutService(db).refund_invoice(
        invoice_id,
        amount=payload.amount,
        reason=payload.reason,
        settings=salon_settings,
    )
    outcome = unwrap_or_raise(result)
    return RefundResponse(
        id=outcome.refund.id,
        amount=outcome.refund.amount,
        pointsReversed=outcome.reversal.points_reversed,
        invoice=_serialize_invoice(outcome.invoice),
    )
