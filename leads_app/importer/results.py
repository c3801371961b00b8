"""
Explicit success/failure results returned by importer services.

Services never raise for expected outcomes (bad input, missing records, state
conflicts). Callers branch on ``result.ok`` and read either ``value`` or
``error``. Unexpected storage failures are caught at the service boundary,
rolled back, logged, and surfaced as ``ErrorKind.INTERNAL``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str
    details: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    value: T | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "ServiceResult[T]":
        return cls(error=ServiceError(kind=kind, message=message, details=details or None))

    def unwrap(self) -> T:
        """Return the value or raise ``RuntimeError`` describing the failure."""
        if self.error is not None:
            raise RuntimeError(f"{self.error.kind.value}: {self.error.message}")
        return self.value  # type: ignore[return-value]


def validation_error(message: str, **details: Any) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.VALIDATION, message, **details)


def not_found(message: str, **details: Any) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.NOT_FOUND, message, **details)


def conflict(message: str, **details: Any) -> ServiceResult:
    return ServiceResult.failure(ErrorKind.CONFLICT, message, **details)


def internal_error(message: str = "Unexpected storage failure; the change was rolled back.") -> ServiceResult:
    return ServiceResult.failure(ErrorKind.INTERNAL, message)
