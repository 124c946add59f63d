"""Tagged results returned by every core operation.

Services never raise for business-rule violations. They return either
``Success(value)`` or ``Failure(kind, message)`` and the HTTP layer maps
the failure kind onto a status code.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

from fastapi import status


T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT_SUBMITTED = "conflict_submitted"
    CONFLICT_LOCKED = "conflict_locked"
    DUPLICATE = "duplicate"
    INVALID_TRANSITION = "invalid_transition"
    INTERNAL_ERROR = "internal_error"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT_SUBMITTED: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT_LOCKED: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: 422,
    ErrorKind.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, str]:
        return {"code": self.kind.value, "message": self.message}


Result = Union[Success[T], Failure]


# Constructors named after the domain errors they stand for.


def validation_error(message: str) -> Failure:
    return Failure(ErrorKind.VALIDATION_FAILED, message)


def not_found(resource: str) -> Failure:
    return Failure(ErrorKind.NOT_FOUND, f"{resource} not found")


def forbidden(message: str = "Only the report owner can perform this action") -> Failure:
    return Failure(ErrorKind.FORBIDDEN, message)


def report_submitted(message: str = "Report is submitted and cannot be modified") -> Failure:
    return Failure(ErrorKind.CONFLICT_SUBMITTED, message)


def report_locked(message: str = "Report is locked and cannot be modified") -> Failure:
    return Failure(ErrorKind.CONFLICT_LOCKED, message)


def duplicate_report() -> Failure:
    return Failure(ErrorKind.DUPLICATE, "A report already exists for this user, month and year")


def duplicate_entry() -> Failure:
    return Failure(ErrorKind.DUPLICATE, "An entry already exists for this mission and date")


def invalid_transition(from_status: str, to_status: str) -> Failure:
    return Failure(
        ErrorKind.INVALID_TRANSITION,
        f"Invalid transition from '{from_status}' to '{to_status}'",
    )


def internal_error() -> Failure:
    return Failure(ErrorKind.INTERNAL_ERROR, "Internal server error")
