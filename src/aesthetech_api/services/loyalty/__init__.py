"""Loyalty ledger and expiry services."""

from .expiry import ExpiryRunResult, PointsExpiryService
from .loyalty_service import (
    ClientLoyaltySnapshot,
    LoyaltyService,
    ReversalResult,
    SettlementRequest,
    SettlementResult,
)

__all__ = [
    "ClientLoyaltySnapshot",
    "ExpiryRunResult",
    "LoyaltyService",
    "PointsExpiryService",
    "ReversalResult",
    "SettlementRequest",
    "SettlementResult",
]
