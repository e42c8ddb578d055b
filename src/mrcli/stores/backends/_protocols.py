"""Protocol definition for object store backends.

The concurrency layer depends only on this structural interface, so any
version-controlled file store (GitHub, a local directory, memory) can be
plugged in without inheritance.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mrcli.stores.base import FileBlob, FileEntry, WriteReceipt


@runtime_checkable
class ObjectStoreBackend(Protocol):
    """Minimal interface used by the lock manager and object writer.

    Write and delete operations must be atomic compare-and-swap operations
    on the file SHA: a write with ``sha=None`` succeeds only if the file does
    not exist, a write with a SHA succeeds only if it is still current.
    """

    name: str

    def get_branch_sha(self, branch: str) -> str:
        """Return the SHA of the latest commit on ``branch``."""
        ...

    def read_file(self, path: str, ref: str | None = None) -> FileBlob:
        """Read one file. Raises ``StoreNotFoundError`` if absent."""
        ...

    def list_directory(self, path: str, ref: str | None = None) -> list[FileEntry]:
        """List the files directly under ``path``; empty if it does not exist."""
        ...

    def write_file(
        self,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> WriteReceipt:
        """Create or replace a file.

        Raises:
            StoreConflictError: If ``sha`` does not match the current file SHA
                (or the file exists and ``sha`` is ``None``).
            StoreNotFoundError: If ``sha`` is given and the file is gone.
        """
        ...

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> str:
        """Delete a file and return the commit SHA.

        Raises:
            StoreNotFoundError: If the file does not exist.
            StoreConflictError: If ``sha`` is not the current file SHA.
        """
        ...
