"""Local directory object store backend.

Stores container files in a directory tree so the CLI can run without a
network connection and so separate processes on one machine can race
against the same store in tests. Compare-and-swap semantics across processes
come from one store-wide ``filelock.FileLock`` held for the duration of
each read-check-write, and atomic temp-file renames for the write itself.

Only a single branch (the default branch) is supported.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import filelock

from mrcli.stores.base import (
    FileBlob,
    FileEntry,
    StoreConflictError,
    StoreConnectionError,
    StoreNotFoundError,
    StoreReadError,
    StoreWriteError,
    WriteReceipt,
    blob_sha,
)
from mrcli.stores.concurrency.atomic import atomic_write

logger = logging.getLogger(__name__)

_META_DIR = ".mrstore"


@dataclass
class FilesystemConfig:
    """Configuration for the filesystem store.

    Attributes:
        base_path: Root directory of the store.
        default_branch: Name reported for the single branch.
        lock_timeout: Seconds to wait for the store-wide mutex.
    """

    base_path: str = ".mediumroast/store"
    default_branch: str = "main"
    lock_timeout: float = 30.0


class FilesystemObjectStore:
    """Object store backed by a local directory.

    Example:
        >>> store = FilesystemObjectStore("/tmp/mrstore")
        >>> store.write_file("Studies/Studies.json", b"[]", "init", "main")
    """

    name = "filesystem"

    def __init__(
        self,
        base_path: str | Path,
        default_branch: str = "main",
        lock_timeout: float = 30.0,
    ) -> None:
        self._config = FilesystemConfig(
            base_path=str(base_path),
            default_branch=default_branch,
            lock_timeout=lock_timeout,
        )
        self._root = Path(base_path).expanduser()
        self._meta = self._root / _META_DIR
        try:
            self._meta.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreConnectionError(self.name, f"cannot use {self._root}: {e}") from e
        self._mutex = filelock.FileLock(str(self._meta / "store.lock"))

    @property
    def default_branch(self) -> str:
        return self._config.default_branch

    @property
    def root(self) -> Path:
        return self._root

    def _locked(self):
        """Acquire the store-wide mutex; usable as a context manager."""
        try:
            return self._mutex.acquire(timeout=self._config.lock_timeout)
        except filelock.Timeout as e:
            raise StoreConnectionError(
                self.name,
                f"timed out after {self._config.lock_timeout}s waiting for {self._mutex.lock_file}",
            ) from e

    def _check_ref(self, ref: str | None) -> None:
        if ref is None or ref == self._config.default_branch:
            return
        if ref == self._read_head():
            return
        raise StoreNotFoundError("Ref", ref)

    def _file(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root.resolve() not in target.parents:
            raise StoreNotFoundError("File", path)
        return target

    def _read_head(self) -> str:
        head = self._meta / "HEAD"
        if not head.exists():
            return hashlib.sha1(b"").hexdigest()
        try:
            return head.read_text().strip()
        except OSError as e:
            raise StoreReadError(f"Cannot read {head}: {e}") from e

    def _advance_head(self, message: str, path: str, sha: str) -> str:
        payload = f"parent {self._read_head()}\n{path} {sha}\n\n{message}"
        commit_sha = hashlib.sha1(payload.encode()).hexdigest()
        try:
            result = atomic_write(self._meta / "HEAD", commit_sha)
        except OSError as e:
            raise StoreWriteError(f"Cannot advance head after {path}: {e}") from e
        if not result.success:
            raise StoreWriteError(f"Cannot advance head after {path}: {result.error}")
        return commit_sha

    def get_branch_sha(self, branch: str) -> str:
        self._check_ref(branch)
        with self._locked():
            return self._read_head()

    def read_file(self, path: str, ref: str | None = None) -> FileBlob:
        self._check_ref(ref)
        target = self._file(path)
        try:
            content = target.read_bytes()
            mtime = target.stat().st_mtime
        except FileNotFoundError as e:
            raise StoreNotFoundError("File", path) from e
        except OSError as e:
            raise StoreReadError(f"Cannot read {path}: {e}") from e
        return FileBlob(
            path=path,
            content=content,
            sha=blob_sha(content),
            modified_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def list_directory(self, path: str, ref: str | None = None) -> list[FileEntry]:
        self._check_ref(ref)
        directory = self._file(path)
        if not directory.is_dir():
            return []
        entries = []
        try:
            for child in sorted(directory.iterdir()):
                if not child.is_file() or child.name.endswith(".tmp"):
                    continue
                rel = f"{path.rstrip('/')}/{child.name}"
                entries.append(FileEntry(path=rel, sha=blob_sha(child.read_bytes())))
        except OSError as e:
            raise StoreReadError(f"Cannot list {path}: {e}") from e
        return entries

    def _current_sha(self, target: Path, path: str) -> str | None:
        try:
            return blob_sha(target.read_bytes())
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreReadError(f"Cannot read {path}: {e}") from e

    def write_file(
        self,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> WriteReceipt:
        self._check_ref(branch)
        target = self._file(path)
        with self._locked():
            current = self._current_sha(target, path)
            if sha is None and current is not None:
                raise StoreConflictError(path, None, current)
            if sha is not None:
                if current is None:
                    raise StoreNotFoundError("File", path)
                if current != sha:
                    raise StoreConflictError(path, sha, current)

            try:
                result = atomic_write(target, content)
            except OSError as e:
                raise StoreWriteError(f"Cannot write {path}: {e}") from e
            if not result.success:
                raise StoreWriteError(f"Atomic write of {path} failed: {result.error}")
            new_sha = blob_sha(content)
            commit_sha = self._advance_head(message, path, new_sha)
            logger.debug("Wrote %s (%d bytes) sha=%s", path, len(content), new_sha[:7])
            return WriteReceipt(path=path, sha=new_sha, commit_sha=commit_sha)

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> str:
        self._check_ref(branch)
        target = self._file(path)
        with self._locked():
            current = self._current_sha(target, path)
            if current is None:
                raise StoreNotFoundError("File", path)
            if current != sha:
                raise StoreConflictError(path, sha, current)
            try:
                target.unlink()
            except OSError as e:
                raise StoreWriteError(f"Cannot delete {path}: {e}") from e
            return self._advance_head(message, path, "0" * 40)
