"""In-memory object store backend.

This module provides a version-controlled file store kept entirely in
memory. It mimics the parts of a git hosting API the lock and writer layers
need: branches pointing at commits, content-addressed blobs and
compare-and-swap writes. Useful for testing and development. Data is not
persisted between sessions.
"""

from __future__ import annotations

import hashlib
import threading
from datetime import datetime, timezone
from typing import Callable

from mrcli.stores.base import (
    FileBlob,
    FileEntry,
    StoreConflictError,
    StoreNotFoundError,
    WriteReceipt,
    blob_sha,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryObjectStore:
    """Thread-safe in-memory object store.

    Every write or delete creates a commit on the target branch. All
    operations on a branch are serialized by one lock, so compare-and-swap
    writes are atomic even when many threads race.

    Example:
        >>> store = MemoryObjectStore()
        >>> receipt = store.write_file("Companies/Companies.json", b"[]", "init", "main")
        >>> store.read_file("Companies/Companies.json").sha == receipt.sha
        True
    """

    name = "memory"

    def __init__(
        self,
        default_branch: str = "main",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the memory store.

        Args:
            default_branch: Branch used when no ref is given.
            clock: Source of modification timestamps.
        """
        self._default_branch = default_branch
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._blobs: dict[str, bytes] = {}
        self._trees: dict[str, dict[str, str]] = {}
        self._commits: dict[str, dict[str, str]] = {}
        self._branches: dict[str, str] = {}
        self._modified: dict[tuple[str, str], datetime] = {}
        self._counter = 0
        self._commit(default_branch, {}, "Initial commit")

    @property
    def default_branch(self) -> str:
        return self._default_branch

    def _commit(self, branch: str, tree: dict[str, str], message: str) -> str:
        self._counter += 1
        parent = self._branches.get(branch, "")
        entries = "\n".join(f"{path} {sha}" for path, sha in sorted(tree.items()))
        payload = f"tree\n{entries}\nparent {parent}\n{self._counter}\n\n{message}"
        commit_sha = hashlib.sha1(payload.encode()).hexdigest()
        self._commits[commit_sha] = dict(tree)
        self._trees[branch] = dict(tree)
        self._branches[branch] = commit_sha
        return commit_sha

    def _tree_for(self, ref: str | None) -> tuple[str, dict[str, str]]:
        ref = ref or self._default_branch
        if ref in self._trees:
            return ref, self._trees[ref]
        if ref in self._commits:
            return ref, self._commits[ref]
        raise StoreNotFoundError("Ref", ref)

    def _branch_tree(self, branch: str) -> dict[str, str]:
        if branch not in self._trees:
            raise StoreNotFoundError("Branch", branch)
        return self._trees[branch]

    def get_branch_sha(self, branch: str) -> str:
        with self._lock:
            if branch not in self._branches:
                raise StoreNotFoundError("Branch", branch)
            return self._branches[branch]

    def read_file(self, path: str, ref: str | None = None) -> FileBlob:
        with self._lock:
            ref_name, tree = self._tree_for(ref)
            sha = tree.get(path)
            if sha is None:
                raise StoreNotFoundError("File", path)
            return FileBlob(
                path=path,
                content=self._blobs[sha],
                sha=sha,
                modified_at=self._modified.get((ref_name, path)),
            )

    def list_directory(self, path: str, ref: str | None = None) -> list[FileEntry]:
        prefix = path.rstrip("/") + "/"
        with self._lock:
            _, tree = self._tree_for(ref)
            return [
                FileEntry(path=p, sha=sha)
                for p, sha in sorted(tree.items())
                if p.startswith(prefix) and "/" not in p[len(prefix):]
            ]

    def write_file(
        self,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> WriteReceipt:
        with self._lock:
            tree = dict(self._branch_tree(branch))
            current = tree.get(path)
            if sha is None and current is not None:
                raise StoreConflictError(path, None, current)
            if sha is not None:
                if current is None:
                    raise StoreNotFoundError("File", path)
                if current != sha:
                    raise StoreConflictError(path, sha, current)

            new_sha = blob_sha(content)
            self._blobs[new_sha] = bytes(content)
            tree[path] = new_sha
            commit_sha = self._commit(branch, tree, message)
            self._modified[(branch, path)] = self._clock()
            return WriteReceipt(path=path, sha=new_sha, commit_sha=commit_sha)

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> str:
        with self._lock:
            tree = dict(self._branch_tree(branch))
            current = tree.get(path)
            if current is None:
                raise StoreNotFoundError("File", path)
            if current != sha:
                raise StoreConflictError(path, sha, current)
            del tree[path]
            self._modified.pop((branch, path), None)
            return self._commit(branch, tree, message)
