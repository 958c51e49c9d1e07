"""Loyalty accounts and their append-only point ledger."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from aesthetech_api.core.clock import utcnow
from aesthetech_api.db.base import Base
from aesthetech_api.domain.loyalty.tiers import LoyaltyTier, LoyaltyTransactionType


class LoyaltyAccount(Base):
    """Point balance and tier for one client; created lazily, never deleted."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("client_id", name="uq_loyalty_accounts_client_id"),
        CheckConstraint("balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(LoyaltyTier, name="loyalty_tier"),
        nullable=False,
        default=LoyaltyTier.SILVER,
        server_default=LoyaltyTier.SILVER.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    client = relationship("Client", back_populates="loyalty_account")
    transactions = relationship(
        "LoyaltyTransaction",
        back_populates="account",
        order_by="LoyaltyTransaction.created_at",
    )


class LoyaltyTransaction(Base):
    """Immutable ledger entry; only ``expires_at`` is cleared once processed."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "bonus_key", name="uq_loyalty_transactions_bonus_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_accounts.id"), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    type = Column(SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type"), nullable=False)
    description = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id"), nullable=True, index=True)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=True, index=True)
    refund_id = Column(UUID(as_uuid=True), ForeignKey("refunds.id"), nullable=True)
    bonus_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    account = relationship("LoyaltyAccount", back_populates="transactions")
