"""Mutual exclusion primitives for jobs that scan across all clients."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Protocol

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class MutualExclusion(Protocol):
    """Try-acquire lock scoped to the caller's current transaction."""

    name: str

    def acquire(self, session: AsyncSession) -> AsyncContextManager[bool]:
        """Yield ``True`` when the lock was obtained, ``False`` when already held."""
        ...


class AdvisoryTransactionLock:
    """PostgreSQL transaction-level advisory lock, released on commit or rollback."""

    def __init__(self, name: str, key: int) -> None:
        self.name = name
        self._key = key

    @asynccontextmanager
    async def acquire(self, session: AsyncSession) -> AsyncIterator[bool]:
        result = await session.execute(
            text("SELECT pg_try_advisory_xact_lock(:key)"),
            {"key": self._key},
        )
        acquired = bool(result.scalar())
        if not acquired:
            logger.info("Advisory lock held elsewhere", lock=self.name, key=self._key)
        yield acquired


_PROCESS_LOCKS: Dict[str, asyncio.Lock] = {}


class InProcessMutex:
    """Single-instance fallback for SQLite and local development."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = _PROCESS_LOCKS.setdefault(name, asyncio.Lock())

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def acquire(self, session: AsyncSession) -> AsyncIterator[bool]:
        if self._lock.locked():
            logger.info("In-process lock held elsewhere", lock=self.name)
            yield False
            return
        async with self._lock:
            yield True


def build_job_lock(session: AsyncSession, *, name: str, key: int) -> MutualExclusion:
    """Choose the lock implementation matching the session's database dialect."""

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return AdvisoryTransactionLock(name, key)
    return InProcessMutex(name)


__all__ = [
    "AdvisoryTransactionLock",
    "InProcessMutex",
    "MutualExclusion",
    "build_job_lock",
]
