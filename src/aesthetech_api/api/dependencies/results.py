"""Translate engine failures into HTTP errors."""

from __future__ import annotations

from typing import TypeVar

from fastapi import HTTPException, status

from aesthetech_api.domain.results import EngineErrorKind, EngineResult

T = TypeVar("T")

_STATUS_BY_KIND = {
    EngineErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineErrorKind.CONSISTENCY: status.HTTP_409_CONFLICT,
    EngineErrorKind.CONCURRENCY: status.HTTP_409_CONFLICT,
    EngineErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def unwrap_or_raise(result: EngineResult[T]) -> T:
    if result.error is not None:
        raise HTTPException(
            status_code=_STATUS_BY_KIND[result.error.kind],
            detail=result.error.as_dict(),
        )
    return result.unwrap()


__all__ = ["unwrap_or_raise"]
