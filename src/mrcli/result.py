"""Tagged results for core operations.

Core operations never raise for expected failures (a held lock, a stale
SHA, a missing object). They return either ``Ok(value)`` or
``Err(kind, message, details)`` and the CLI boundary renders them.

Example:
    >>> result = repo.find_by_name("Acme")
    >>> if result.ok:
    ...     print(result.value)
    ... else:
    ...     print(result.status.code, result.message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")


class ErrorKind(Enum):
    """Failure categories reported by core operations."""

    LOCK_CONTENTION = "lock_contention"
    WRITE_CONFLICT = "write_conflict"
    NOT_FOUND = "not_found"
    PARTIAL_LOCK_FAILURE = "partial_lock_failure"
    ORPHAN_RISK = "orphan_risk"
    PERMISSION_DENIED = "permission_denied"
    INVALID_FIELD = "invalid_field"
    INVALID_REQUEST = "invalid_request"
    RELEASE_FAILURE = "release_failure"
    BACKEND_ERROR = "backend_error"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def retryable(self) -> bool:
        """Whether a caller may reasonably try the same request again."""
        return self in (ErrorKind.LOCK_CONTENTION, ErrorKind.WRITE_CONFLICT)


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.LOCK_CONTENTION: 423,
    ErrorKind.WRITE_CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PARTIAL_LOCK_FAILURE: 503,
    ErrorKind.ORPHAN_RISK: 500,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.INVALID_FIELD: 403,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.RELEASE_FAILURE: 503,
    ErrorKind.BACKEND_ERROR: 503,
}


@dataclass(frozen=True)
class Status:
    """Status code and message pair shown to users."""

    code: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"status_code": self.code, "status_msg": self.message}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result carrying a payload."""

    value: T
    message: str = ""

    @property
    def ok(self) -> bool:
        return True

    @property
    def status(self) -> Status:
        return Status(200, self.message or "OK")

    def unwrap(self) -> T:
        return self.value

    def map(self, func: Callable[[T], U]) -> "Ok[U]":
        return Ok(func(self.value), self.message)


@dataclass(frozen=True)
class Err:
    """Failed result.

    Attributes:
        kind: Failure category.
        message: Human readable description.
        details: Structured context (containers involved, names that failed).
    """

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @property
    def status(self) -> Status:
        return Status(self.kind.status_code, self.message)

    def unwrap(self) -> Any:
        raise ResultError(self)

    def map(self, func: Callable[[Any], Any]) -> "Err":
        return self

    def with_details(self, **details: Any) -> "Err":
        merged = dict(self.details)
        merged.update(details)
        return Err(self.kind, self.message, merged)


Result = Union[Ok[T], Err]


class ResultError(Exception):
    """Raised when ``unwrap()`` is called on an ``Err``."""

    def __init__(self, err: Err) -> None:
        self.err = err
        super().__init__(f"[{err.kind.name}] {err.message}")


__all__ = [
    "ErrorKind",
    "Status",
    "Ok",
    "Err",
    "Result",
    "ResultError",
]
