"""Transaction scope helpers shared by the loyalty and series services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, TypeVar

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import SessionTransactionOrigin

T = TypeVar("T")


@asynccontextmanager
async def with_transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit when the block exits cleanly, roll back on any exception.

    A transaction that was only auto-begun by earlier reads is adopted and
    committed here. A transaction the caller opened explicitly is joined
    without committing; the caller's own ``begin()`` block decides its fate.
    """

    current = session.sync_session.get_transaction()
    if current is None:
        async with session.begin():
            yield session
        return

    if current.origin is not SessionTransactionOrigin.AUTOBEGIN or session.in_nested_transaction():
        yield session
        return

    try:
        yield session
    except BaseException:
        await session.rollback()
        raise
    await session.commit()


def lock_for_update(stmt: Select[T]) -> Select[T]:
    """Serialize writers on the selected rows (row lock on PostgreSQL)."""

    return stmt.with_for_update()


__all__ = ["lock_for_update", "with_transaction"]
