"""Base types and exceptions for object store backends.

An object store is a version-controlled file tree: files are addressed by
path, every read returns a content SHA, and every write supplies the SHA it
expects to replace (``None`` when the file must not exist yet). Backends
raise the exceptions below; the concurrency layer turns them into result
values.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime


# =============================================================================
# Exceptions
# =============================================================================


class StoreError(Exception):
    """Base exception for all store-related errors."""

    pass


class StoreNotFoundError(StoreError):
    """Raised when a requested file or directory is not found in the store."""

    def __init__(self, item_type: str, identifier: str) -> None:
        self.item_type = item_type
        self.identifier = identifier
        super().__init__(f"{item_type} not found: {identifier}")


class StoreConflictError(StoreError):
    """Raised when a write's expected SHA does not match the stored SHA.

    ``expected`` is ``None`` for create-only writes that found an existing
    file.
    """

    def __init__(
        self,
        path: str,
        expected: str | None,
        actual: str | None = None,
    ) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        if expected is None:
            message = f"{path} already exists"
        else:
            message = f"{path} changed since read (expected sha {expected[:7]})"
        super().__init__(message)


class StorePermissionError(StoreError):
    """Raised when the backend refuses an operation for lack of rights."""

    pass


class StoreConnectionError(StoreError):
    """Raised when connection to store backend fails."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Failed to connect to {backend}: {message}")


class StoreWriteError(StoreError):
    """Raised when writing to store fails."""

    pass


class StoreReadError(StoreError):
    """Raised when reading from store fails."""

    pass


# =============================================================================
# Value Types
# =============================================================================


@dataclass(frozen=True)
class FileBlob:
    """Content of one file at a given version.

    Attributes:
        path: Path of the file inside the store.
        content: Raw file content.
        sha: Content SHA used as the optimistic concurrency token.
        modified_at: Last modification time when the backend knows it.
    """

    path: str
    content: bytes
    sha: str
    modified_at: datetime | None = None

    def text(self) -> str:
        return self.content.decode("utf-8")


@dataclass(frozen=True)
class FileEntry:
    """One entry of a directory listing."""

    path: str
    sha: str
    type: str = "file"

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class WriteReceipt:
    """Outcome of a successful write.

    Attributes:
        path: Path that was written.
        sha: New content SHA of the file.
        commit_sha: SHA of the commit that recorded the write.
    """

    path: str
    sha: str
    commit_sha: str


def blob_sha(content: bytes) -> str:
    """Compute the git blob SHA-1 of ``content``."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


def join_path(*parts: str) -> str:
    """Join store path segments with ``/`` regardless of platform."""
    return "/".join(p.strip("/") for p in parts if p)
