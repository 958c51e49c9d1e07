from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    settlements: Dict[str, int]
    points: Dict[str, int]
    expiry: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "settlements": dict(self.settlements),
            "points": dict(self.points),
            "expiry": dict(self.expiry),
        }


class LoyaltyObservabilityStore:
    """In-process counters for sale settlement, refunds and the expiry job."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._settlements: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._expiry: Dict[str, int] = defaultdict(int)

    def record_sale_settled(self, *, earned: int, redeemed: int, bonus: int) -> None:
        with self._lock:
            self._settlements["sales_settled"] += 1
            self._points["earned"] += earned
            self._points["redeemed"] += redeemed
            self._points["bonus"] += bonus
            if bonus:
                self._settlements["birthday_bonuses"] += 1

    def record_settlement_failure(self, kind: str) -> None:
        with self._lock:
            self._settlements[f"failed:{kind}"] += 1

    def record_refund_reversal(self, *, reversed_points: int, clamped: bool) -> None:
        with self._lock:
            self._settlements["refunds"] += 1
            self._points["reversed"] += reversed_points
            if clamped:
                self._settlements["refunds_clamped"] += 1

    def record_adjustment(self, points: int) -> None:
        with self._lock:
            self._points["adjusted"] += points

    def record_expiry_run(self, *, clients_affected: int, points_expired: int) -> None:
        with self._lock:
            self._expiry["runs"] += 1
            self._expiry["clients_affected"] += clients_affected
            self._expiry["points_expired"] += points_expired

    def record_expiry_skipped(self, reason: str) -> None:
        with self._lock:
            self._expiry[f"skipped:{reason}"] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                settlements=dict(self._settlements),
                points=dict(self._points),
                expiry=dict(self._expiry),
            )

    def reset(self) -> None:
        with self._lock:
            self._settlements.clear()
            self._points.clear()
            self._expiry.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
