"""Explicit success/failure results returned by the loyalty and series engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class EngineErrorKind(str, Enum):
    """Failure taxonomy shared by every engine operation."""

    VALIDATION = "validation"
    CONSISTENCY = "consistency"
    CONCURRENCY = "concurrency"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class EngineError:
    kind: EngineErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class EngineFailure(Exception):
    """Raised inside a transaction body to abort it with a typed error."""

    kind: EngineErrorKind = EngineErrorKind.VALIDATION

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.error = EngineError(kind=self.kind, message=message, details=details)


class ValidationViolation(EngineFailure):
    kind = EngineErrorKind.VALIDATION


class ConsistencyViolation(EngineFailure):
    kind = EngineErrorKind.CONSISTENCY


class ConcurrencyViolation(EngineFailure):
    kind = EngineErrorKind.CONCURRENCY


class ResourceNotFound(EngineFailure):
    kind = EngineErrorKind.NOT_FOUND


@dataclass(frozen=True)
class EngineResult(Generic[T]):
    value: T | None = None
    error: EngineError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "EngineResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: EngineErrorKind, message: str, **details: Any) -> "EngineResult[T]":
        return cls(error=EngineError(kind=kind, message=message, details=details))

    @classmethod
    def from_failure(cls, failure: EngineFailure) -> "EngineResult[T]":
        return cls(error=failure.error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise RuntimeError(f"{self.error.kind.value} failure: {self.error.message}")
        return self.value  # type: ignore[return-value]


__all__ = [
    "ConcurrencyViolation",
    "ConsistencyViolation",
    "EngineError",
    "EngineErrorKind",
    "EngineFailure",
    "EngineResult",
    "ResourceNotFound",
    "ValidationViolation",
]
