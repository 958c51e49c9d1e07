"""Nightly sweep that expires earned and bonus points past their expiry date."""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.core.settings import settings as app_settings
from aesthetech_api.db.locks import MutualExclusion, build_job_lock
from aesthetech_api.db.transactions import lock_for_update, with_transaction
from aesthetech_api.domain.loyalty.tiers import EXPIRING_TRANSACTION_TYPES, LoyaltyTransactionType
from aesthetech_api.domain.results import EngineErrorKind, EngineFailure, EngineResult
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction
from aesthetech_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from aesthetech_api.services.loyalty.loyalty_service import LoyaltyService

EXPIRY_LOCK_NAME = "loyalty-points-expiry"


@dataclass(frozen=True)
class ExpiryRunResult:
    clients_affected: int
    total_points_expired: int
    transactions_processed: int = 0
    skipped: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "clientsAffected": self.clients_affected,
            "totalPointsExpired": self.total_points_expired,
            "transactionsProcessed": self.transactions_processed,
            "skipped": self.skipped,
        }


def expiry_description(points: int) -> str:
    return f"{points} points expired"


class PointsExpiryService:
    """Converts lapsed EARNED/BONUS rows into one EXPIRED entry per client.

    Source rows have ``expires_at`` cleared once processed, so a second run over
    the same data finds nothing to do.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        lock: MutualExclusion | None = None,
        now: Callable[[], dt.datetime] | None = None,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._lock = lock
        self._now = now
        self._observability = observability or get_loyalty_store()
        self._loyalty = LoyaltyService(db_session, now=now, observability=self._observability)

    async def run(self, settings: SettingsSnapshot) -> EngineResult[ExpiryRunResult]:
        if not settings.points_expiry_enabled:
            self._observability.record_expiry_skipped("disabled")
            logger.info("Points expiry disabled; skipping sweep")
            return EngineResult.ok(ExpiryRunResult(clients_affected=0, total_points_expired=0, skipped=True))

        lock = self._lock or build_job_lock(
            self._db,
            name=EXPIRY_LOCK_NAME,
            key=app_settings.loyalty_expiry_lock_key,
        )
        try:
            async with with_transaction(self._db):
                async with lock.acquire(self._db) as acquired:
                    if not acquired:
                        self._observability.record_expiry_skipped("locked")
                        return EngineResult.fail(
                            EngineErrorKind.CONCURRENCY,
                            "Points expiry is already running",
                            lock=lock.name,
                        )
                    outcome = await self._expire(settings)
        except EngineFailure as failure:
            logger.error("Points expiry sweep aborted", reason=failure.error.message)
            return EngineResult.from_failure(failure)

        self._observability.record_expiry_run(
            clients_affected=outcome.clients_affected,
            points_expired=outcome.total_points_expired,
        )
        logger.info(
            "Points expiry sweep finished",
            clients_affected=outcome.clients_affected,
            points_expired=outcome.total_points_expired,
            transactions_processed=outcome.transactions_processed,
        )
        return EngineResult.ok(outcome)

    async def _expire(self, settings: SettingsSnapshot) -> ExpiryRunResult:
        now = self._loyalty.clock(settings).now()
        stmt = lock_for_update(
            select(LoyaltyTransaction)
            .where(
                LoyaltyTransaction.type.in_(list(EXPIRING_TRANSACTION_TYPES)),
                LoyaltyTransaction.expires_at.is_not(None),
                LoyaltyTransaction.expires_at < now,
            )
            .order_by(LoyaltyTransaction.account_id, LoyaltyTransaction.created_at)
        )
        lapsed = list((await self._db.execute(stmt)).scalars().all())
        if not lapsed:
            return ExpiryRunResult(clients_affected=0, total_points_expired=0)

        by_account: Dict[UUID, List[LoyaltyTransaction]] = defaultdict(list)
        for entry in lapsed:
            by_account[entry.account_id].append(entry)

        accounts_stmt = lock_for_update(
            select(LoyaltyAccount)
            .where(LoyaltyAccount.id.in_(list(by_account)))
            .order_by(LoyaltyAccount.id)
        )
        accounts = {account.id: account for account in (await self._db.execute(accounts_stmt)).scalars()}

        clients_affected = 0
        total_expired = 0
        for account_id, entries in by_account.items():
            account = accounts[account_id]
            # Points already redeemed from these rows cannot expire twice
            to_expire = min(sum(entry.points for entry in entries), int(account.balance or 0))
            if to_expire > 0:
                await self._loyalty.record_ledger_entry(
                    account,
                    points=-to_expire,
                    entry_type=LoyaltyTransactionType.EXPIRED,
                    description=expiry_description(to_expire),
                )
                self._loyalty.refresh_tier(account, settings)
                clients_affected += 1
                total_expired += to_expire
            for entry in entries:
                entry.expires_at = None

        await self._db.flush()
        return ExpiryRunResult(
            clients_affected=clients_affected,
            total_points_expired=total_expired,
            transactions_processed=len(lapsed),
        )


__all__ = ["EXPIRY_LOCK_NAME", "ExpiryRunResult", "PointsExpiryService", "expiry_description"]
