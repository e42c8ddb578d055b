"""Atomic file writes for local store backends.

A container file must never be observed half written. Writes go to a
temporary file in the target directory, are synced to disk and then
renamed over the target in one step.

Example:
    >>> with AtomicFileWriter("/store/Companies/Companies.json") as writer:
    ...     writer.write(b"[]")
    ...     writer.commit()
    >>>
    >>> # Simple atomic write
    >>> atomic_write(Path("/store/Companies/Companies.json"), b"[]")
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass
class AtomicOperation:
    """Represents an atomic operation result.

    Attributes:
        success: Whether the operation succeeded.
        path: Path that was operated on.
        error: Error message if operation failed.
        bytes_written: Number of bytes written.
    """

    success: bool
    path: Path
    error: str | None = None
    bytes_written: int = 0


class AtomicFileWriter:
    """Atomic file writer using write-to-temp-then-rename pattern.

    If any step fails, the original file remains unchanged and the
    temporary file is removed when the context exits.
    """

    def __init__(
        self,
        path: Path | str,
        sync_on_commit: bool = True,
    ) -> None:
        """Initialize the atomic writer.

        Args:
            path: Target file path.
            sync_on_commit: Whether to fsync before rename.
        """
        self._path = Path(path)
        self._sync_on_commit = sync_on_commit
        self._temp_file: Any = None
        self._temp_path: Path | None = None
        self._committed = False
        self._bytes_written = 0

    def __enter__(self) -> "AtomicFileWriter":
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # Temp file in same directory so the rename stays on one filesystem
        fd, temp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        self._temp_path = Path(temp_path)
        self._temp_file = os.fdopen(fd, "wb")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._temp_file and not self._temp_file.closed:
            self._temp_file.close()
        if not self._committed and self._temp_path and self._temp_path.exists():
            self._temp_path.unlink(missing_ok=True)

    def write(self, data: bytes | str) -> int:
        """Write data to the temp file."""
        if self._committed:
            raise RuntimeError("Cannot write after commit")
        if self._temp_file is None:
            raise RuntimeError("Must be used within context manager")

        if isinstance(data, str):
            data = data.encode("utf-8")
        count = self._temp_file.write(data)
        self._bytes_written += count
        return count

    def commit(self) -> AtomicOperation:
        """Commit the write by renaming temp file to target."""
        if self._committed:
            raise RuntimeError("Already committed")
        if self._temp_file is None or self._temp_path is None:
            raise RuntimeError("Must be used within context manager")

        try:
            self._temp_file.flush()
            if self._sync_on_commit:
                os.fsync(self._temp_file.fileno())
            self._temp_file.close()
            self._temp_path.replace(self._path)
            self._committed = True
        except OSError as e:
            return AtomicOperation(success=False, path=self._path, error=str(e))

        return AtomicOperation(
            success=True,
            path=self._path,
            bytes_written=self._bytes_written,
        )


def atomic_write(path: Path | str, content: bytes | str) -> AtomicOperation:
    """Convenience function for atomic file write.

    Example:
        >>> result = atomic_write(Path("Companies.json"), json.dumps(data))
        >>> if result.success:
        ...     print(f"Wrote {result.bytes_written} bytes")
    """
    with AtomicFileWriter(path) as writer:
        writer.write(content)
        return writer.commit()
