"""
Result types for domain operations.

Service functions return ``Ok(value)`` or ``Failure(kind, message)`` for
expected outcomes (unknown ids, bad input, duplicates). Store faults are
the only thing raised, wrapped in ``InfrastructureError``.
"""
from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    DUPLICATE = "duplicate"


# Non-admin acting as admin is a validation failure at the HTTP boundary.
HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 400,
    ErrorKind.DUPLICATE: 409,
}


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    errors: tuple[ValidationError, ...] = field(default_factory=tuple)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "fieldErrors": [{"field": e.field, "message": e.message} for e in self.errors],
        }


def not_found(message: str) -> Failure:
    return Failure(ErrorKind.NOT_FOUND, message)


def invalid(message: str, errors: list[ValidationError] | None = None) -> Failure:
    return Failure(ErrorKind.VALIDATION, message, tuple(errors or ()))


def unauthorized(message: str) -> Failure:
    return Failure(ErrorKind.UNAUTHORIZED, message)


def duplicate(message: str) -> Failure:
    return Failure(ErrorKind.DUPLICATE, message)


class InfrastructureError(RuntimeError):
    """Store or transport fault. Always carries the underlying cause."""


def wraps_store_errors(action: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Re-raise SQLAlchemy errors from a service function as InfrastructureError."""

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any) -> T:
            try:
                return fn(*args, **kwargs)
            except SQLAlchemyError as e:
                raise InfrastructureError(f"Failed to {action}") from e

        return wrapped

    return decorator
