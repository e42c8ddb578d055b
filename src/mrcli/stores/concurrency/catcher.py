"""Catch and release of container sets.

Catching a set of containers means locking all of them, reading their
objects and SHAs, and recording the branch the writes will go to. It is
all-or-nothing: if any lock cannot be taken, every lock taken so far in
the same call is released before the failure is returned, so no caller
ever holds container A while failing on container B.

Release unlocks every held container and keeps going past failures,
reporting which containers could not be unlocked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from mrcli.result import Err, ErrorKind, Ok, Result
from mrcli.stores.base import StoreError
from mrcli.stores.concurrency._errors import store_err
from mrcli.stores.concurrency.locks import ContainerLockManager, LockHandle
from mrcli.stores.concurrency.writer import ObjectWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchRef:
    """Branch the caught containers are written to."""

    name: str
    sha: str


@dataclass
class ContainerState:
    """Per-container part of ``RepoMetadata``.

    Attributes:
        objects: Objects read under the lock.
        object_sha: SHA of the container file; ``None`` if it does not exist.
        lock: Handle of the lock held on the container.
    """

    objects: list[dict[str, Any]] = field(default_factory=list)
    object_sha: str | None = None
    lock: LockHandle | None = None


@dataclass
class RepoMetadata:
    """Request-scoped state of one catch/write/release cycle.

    Owned by the call that created it and never shared between operations.
    """

    containers: dict[str, ContainerState] = field(default_factory=dict)
    branch: BranchRef | None = None

    @classmethod
    def for_containers(cls, names: Iterable[str]) -> "RepoMetadata":
        return cls(containers={name: ContainerState() for name in names})

    @property
    def held(self) -> list[str]:
        """Names of containers whose lock is currently held."""
        return [name for name, state in self.containers.items() if state.lock is not None]


class ContainerCatcher:
    """Locks, reads and releases sets of containers.

    Example:
        >>> catcher = ContainerCatcher(lock_manager, writer)
        >>> caught = catcher.catch_container(RepoMetadata.for_containers(["Companies"]))
        >>> if caught.ok:
        ...     meta = caught.value
        ...     ...  # merge and write
        ...     catcher.release_container(meta)
    """

    def __init__(self, lock_manager: ContainerLockManager, writer: ObjectWriter) -> None:
        self._locks = lock_manager
        self._writer = writer

    @property
    def lock_manager(self) -> ContainerLockManager:
        return self._locks

    @property
    def writer(self) -> ObjectWriter:
        return self._writer

    def catch_container(self, repo_metadata: RepoMetadata) -> Result[RepoMetadata]:
        """Lock and read every container named in ``repo_metadata``.

        Containers are locked in sorted name order. On failure all locks
        taken by this call are released; the returned error is the lock
        error itself when nothing was acquired and ``PARTIAL_LOCK_FAILURE``
        when some containers had been locked.
        """
        names = sorted(repo_metadata.containers)
        if not names:
            return Ok(repo_metadata, "0 containers are ready for use.")

        acquired: list[str] = []
        for name in names:
            locked = self._locks.lock_container(name)
            if not locked.ok:
                rollback = self._rollback(repo_metadata, acquired)
                if not acquired:
                    return locked.with_details(rollback_failures=rollback) if rollback else locked
                logger.info(
                    "Rolled back locks on %s after failing to lock %s",
                    ", ".join(acquired),
                    name,
                )
                return Err(
                    ErrorKind.PARTIAL_LOCK_FAILURE,
                    f"unable to lock [{name}]; released [{', '.join(acquired)}] "
                    "and cannot perform creates, updates or deletes on objects.",
                    {
                        "acquired": list(acquired),
                        "failed": name,
                        "cause": locked.kind.name,
                        "cause_message": locked.message,
                        "rollback_failures": rollback,
                    },
                )
            repo_metadata.containers[name].lock = locked.value
            acquired.append(name)

        for name in names:
            snapshot = self._writer.read_objects(name)
            if not snapshot.ok:
                rollback = self._rollback(repo_metadata, acquired)
                return snapshot.with_details(rollback_failures=rollback)
            state = repo_metadata.containers[name]
            state.objects = snapshot.value.objects
            state.object_sha = snapshot.value.sha

        branch = self._locks.branch
        try:
            repo_metadata.branch = BranchRef(
                name=branch,
                sha=self._writer.backend.get_branch_sha(branch),
            )
        except StoreError as e:
            rollback = self._rollback(repo_metadata, acquired)
            return store_err(e, f"Unable to resolve branch [{branch}]", rollback_failures=rollback)

        return Ok(repo_metadata, f"{len(names)} containers are ready for use.")

    def _rollback(self, repo_metadata: RepoMetadata, acquired: list[str]) -> list[str]:
        """Unlock ``acquired`` containers; return the ones that failed."""
        failures: list[str] = []
        for name in reversed(acquired):
            state = repo_metadata.containers[name]
            if state.lock is None:
                continue
            unlocked = self._locks.unlock_container(name, state.lock.sha)
            if unlocked.ok:
                state.lock = None
            else:
                logger.error("Rollback could not unlock %s: %s", name, unlocked.message)
                failures.append(name)
        return failures

    def release_container(self, repo_metadata: RepoMetadata) -> Result[list[str]]:
        """Unlock every container held in ``repo_metadata``.

        Every release is attempted even if an earlier one fails.

        Returns:
            ``Ok(released_names)`` or ``Err(RELEASE_FAILURE)`` whose details
            list the containers still locked.
        """
        released: list[str] = []
        failed: dict[str, str] = {}
        for name in sorted(repo_metadata.containers):
            state = repo_metadata.containers[name]
            if state.lock is None:
                continue
            unlocked = self._locks.unlock_container(name, state.lock.sha)
            if unlocked.ok:
                state.lock = None
                released.append(name)
            else:
                logger.error("Unable to release %s: %s", name, unlocked.message)
                failed[name] = unlocked.message

        if failed:
            return Err(
                ErrorKind.RELEASE_FAILURE,
                "Unable to unlock the container(s), objects may have been written; "
                f"please check [{', '.join(failed)}] for objects and the lock file.",
                {"released": released, "failed": failed},
            )
        return Ok(released, f"Released [{len(released)}] containers.")
