"""Translation of backend exceptions into result values."""

from __future__ import annotations

from typing import Any

from mrcli.result import Err, ErrorKind
from mrcli.stores.base import (
    StoreConflictError,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
)


def store_err(error: StoreError, message: str, **details: Any) -> Err:
    """Map a ``StoreError`` onto the matching ``ErrorKind``."""
    details["cause"] = type(error).__name__
    if isinstance(error, StoreConflictError):
        details.setdefault("expected_sha", error.expected)
        kind = ErrorKind.WRITE_CONFLICT
    elif isinstance(error, StoreNotFoundError):
        kind = ErrorKind.NOT_FOUND
    elif isinstance(error, StorePermissionError):
        kind = ErrorKind.PERMISSION_DENIED
    else:
        kind = ErrorKind.BACKEND_ERROR
    return Err(kind, f"{message}: {error}", details)
