"""Nightly loyalty points expiry job."""

# meta: job: loyalty-points-expiry

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.domain.results import EngineErrorKind
from aesthetech_api.services.loyalty.expiry import PointsExpiryService
from aesthetech_api.services.settings_provider import SettingsProvider

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def expire_loyalty_points(*, session_factory: SessionFactory) -> Dict[str, Any]:
    """Expire lapsed EARNED and BONUS points; a held lock turns the run into a no-op."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    async with session as managed_session:
        settings_snapshot = await SettingsProvider(managed_session).snapshot()
        result = await PointsExpiryService(managed_session).run(settings_snapshot)

    if not result.success:
        if result.error.kind is EngineErrorKind.CONCURRENCY:
            summary = {"clientsAffected": 0, "totalPointsExpired": 0, "skipped": True, "reason": "locked"}
            logger.bind(summary=summary).info("Loyalty points expiry already running elsewhere")
            return summary
        raise RuntimeError(f"Loyalty points expiry failed: {result.error.message}")

    summary = result.unwrap().as_dict()
    logger.bind(summary=summary).info("Loyalty points expiry sweep completed")
    return summary


__all__ = ["SessionFactory", "expire_loyalty_points"]
