"""Container lock manager.

A container is held by whoever owns a ``*.lock`` file inside the
container's directory in the object store. This module creates, detects and
removes those lock files.

Locking is a non-blocking try-lock built on the backend's create-only
write: two processes racing to create the same lock path cannot both
succeed. Processes using different process names create different lock
paths, so after creating its own lock a locker re-lists the directory and
backs off if any other live lock is present. Under a linearizable listing
at most one locker survives.

Lock files carry a JSON record of who took the lock and when. Locks older
than the configured ``StaleLockPolicy.max_age`` are considered abandoned
(their owner crashed) and are broken by the next locker.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from mrcli.result import Err, ErrorKind, Ok, Result
from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.base import (
    FileEntry,
    StoreConflictError,
    StoreError,
    StoreNotFoundError,
    join_path,
)
from mrcli.stores.concurrency._errors import store_err

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lock Records
# =============================================================================


@dataclass(frozen=True)
class LockRecord:
    """Content of a lock file.

    Attributes:
        owner: Process name that took the lock.
        pid: OS process id of the owner.
        host: Host name of the owner.
        token: Random token distinguishing two acquisitions by one owner.
        acquired_at: When the lock was taken (UTC).
    """

    owner: str
    acquired_at: datetime
    pid: int = field(default_factory=os.getpid)
    host: str = field(default_factory=socket.gethostname)
    token: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "pid": self.pid,
            "host": self.host,
            "token": self.token,
            "acquired_at": self.acquired_at.isoformat(),
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, content: bytes) -> "LockRecord | None":
        """Parse a lock file; ``None`` for empty or foreign lock files."""
        if not content.strip():
            return None
        try:
            data = json.loads(content)
            acquired_at = datetime.fromisoformat(data["acquired_at"])
        except (ValueError, KeyError, TypeError):
            return None
        if acquired_at.tzinfo is None:
            acquired_at = acquired_at.replace(tzinfo=timezone.utc)
        return cls(
            owner=str(data.get("owner", "")),
            acquired_at=acquired_at,
            pid=int(data.get("pid", 0)),
            host=str(data.get("host", "")),
            token=str(data.get("token", "")),
        )

    def age(self, now: datetime) -> timedelta:
        return now - self.acquired_at


@dataclass(frozen=True)
class StaleLockPolicy:
    """When a lock is considered abandoned.

    Attributes:
        max_age: Age after which a lock may be broken.
        break_stale: Whether ``lock_container`` breaks stale locks itself.
    """

    max_age: timedelta = timedelta(minutes=10)
    break_stale: bool = True

    def is_stale(self, acquired_at: datetime | None, now: datetime) -> bool:
        if acquired_at is None:
            return False
        return now - acquired_at > self.max_age

    @classmethod
    def never(cls) -> "StaleLockPolicy":
        """Honour every lock regardless of age."""
        return cls(max_age=timedelta.max, break_stale=False)


@dataclass(frozen=True)
class LockHolder:
    """A lock file found in a container directory."""

    path: str
    sha: str
    record: LockRecord | None
    acquired_at: datetime | None
    stale: bool

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "owner": self.record.owner if self.record else None,
            "pid": self.record.pid if self.record else None,
            "host": self.record.host if self.record else None,
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
            "stale": self.stale,
        }


@dataclass(frozen=True)
class LockStatus:
    """Result of inspecting a container for locks."""

    container: str
    holders: tuple[LockHolder, ...] = ()

    @property
    def locked(self) -> bool:
        """True if any live (non-stale) lock is present."""
        return any(not h.stale for h in self.holders)

    @property
    def stale_holders(self) -> tuple[LockHolder, ...]:
        return tuple(h for h in self.holders if h.stale)


@dataclass(frozen=True)
class LockHandle:
    """Proof of a held container lock, needed to unlock it.

    Attributes:
        container: Locked container name.
        path: Path of the lock file.
        sha: Content SHA of the lock file, required to delete it.
        commit_sha: Commit that created the lock file.
        record: Lock record written into the file.
    """

    container: str
    path: str
    sha: str
    commit_sha: str
    record: LockRecord


# =============================================================================
# Lock Manager
# =============================================================================


class ContainerLockManager:
    """Creates, detects and removes container lock files.

    Example:
        >>> manager = ContainerLockManager(store, process_name="mrcli-company")
        >>> locked = manager.lock_container("Companies")
        >>> if locked.ok:
        ...     ...  # exclusive access to Companies
        ...     manager.unlock_container("Companies", locked.value.sha)
    """

    def __init__(
        self,
        backend: ObjectStoreBackend,
        process_name: str,
        branch: str = "main",
        stale_policy: StaleLockPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the lock manager.

        Args:
            backend: Object store holding the containers.
            process_name: Lock file stem, ``<container>/<process_name>.lock``.
            branch: Main line branch the locks are written to.
            stale_policy: Policy for abandoned locks.
            clock: Source of the current time, injectable for tests.
        """
        self._backend = backend
        self._process_name = process_name
        self._branch = branch
        self._stale_policy = stale_policy or StaleLockPolicy()
        self._clock = clock or utc_now

    @property
    def backend(self) -> ObjectStoreBackend:
        return self._backend

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def process_name(self) -> str:
        return self._process_name

    @property
    def stale_policy(self) -> StaleLockPolicy:
        return self._stale_policy

    def lock_path(self, container: str) -> str:
        return join_path(container, f"{self._process_name}{LOCK_SUFFIX}")

    def _holder(self, entry: FileEntry, now: datetime) -> LockHolder:
        record: LockRecord | None = None
        acquired_at: datetime | None = None
        try:
            blob = self._backend.read_file(entry.path, ref=self._branch)
        except StoreNotFoundError:
            # Released between listing and reading.
            blob = None
        if blob is not None:
            record = LockRecord.from_bytes(blob.content)
            acquired_at = record.acquired_at if record else blob.modified_at
        return LockHolder(
            path=entry.path,
            sha=blob.sha if blob is not None else entry.sha,
            record=record,
            acquired_at=acquired_at,
            stale=self._stale_policy.is_stale(acquired_at, now),
        )

    def _list_holders(self, container: str) -> list[LockHolder]:
        now = self._clock()
        entries = self._backend.list_directory(container, ref=self._branch)
        return [
            self._holder(entry, now)
            for entry in entries
            if entry.type == "file" and entry.name.endswith(LOCK_SUFFIX)
        ]

    def check_for_lock(self, container: str) -> Result[LockStatus]:
        """Inspect a container for lock files without modifying anything.

        Returns:
            ``Ok(LockStatus)``; ``status.locked`` is True when a live lock
            exists. Backend failures are returned as ``Err``.
        """
        try:
            holders = self._list_holders(container)
        except StoreError as e:
            return store_err(e, f"Unable to inspect locks on [{container}]")
        return Ok(
            LockStatus(container=container, holders=tuple(holders)),
            f"container [{container}] is {'locked' if any(not h.stale for h in holders) else 'not locked'}",
        )

    def break_lock(self, holder: LockHolder) -> Result[str]:
        """Remove a lock file regardless of owner, using its current SHA."""
        container = holder.path.rsplit("/", 1)[0]
        try:
            commit_sha = self._backend.delete_file(
                holder.path,
                f"Breaking stale lock on container [{container}]",
                self._branch,
                holder.sha,
            )
        except StoreNotFoundError:
            return Ok("", f"lock [{holder.path}] already removed")
        except StoreError as e:
            return store_err(e, f"Unable to break lock [{holder.path}]")
        logger.warning(
            "Broke stale lock %s (owner=%s, acquired_at=%s)",
            holder.path,
            holder.record.owner if holder.record else "unknown",
            holder.acquired_at.isoformat() if holder.acquired_at else "unknown",
        )
        return Ok(commit_sha, f"broke lock [{holder.path}]")

    def lock_container(self, container: str) -> Result[LockHandle]:
        """Try once to take the lock on ``container``.

        Returns:
            ``Ok(LockHandle)`` on success, ``Err(LOCK_CONTENTION)`` if another
            live lock exists or wins the race, other ``Err`` kinds for
            backend failures.
        """
        status = self.check_for_lock(container)
        if not status.ok:
            return status

        for holder in status.value.holders:
            if holder.stale and self._stale_policy.break_stale:
                broken = self.break_lock(holder)
                if not broken.ok:
                    return Err(
                        ErrorKind.LOCK_CONTENTION,
                        f"container [{container}] holds a stale lock that could not be removed",
                        {"container": container, "holder": holder.to_dict(), "cause": broken.message},
                    )
            else:
                logger.info("Container %s is locked by %s", container, holder.path)
                return _contention(container, holder)

        path = self.lock_path(container)
        record = LockRecord(owner=self._process_name, acquired_at=self._clock())
        try:
            receipt = self._backend.write_file(
                path,
                record.to_bytes(),
                f"Locking container [{container}]",
                self._branch,
                sha=None,
            )
        except StoreConflictError:
            logger.info("Lost the race for %s", path)
            return Err(
                ErrorKind.LOCK_CONTENTION,
                f"container [{container}] was locked by another process",
                {"container": container, "lock_file": path},
            )
        except StoreError as e:
            return store_err(e, f"Unable to lock the container [{container}]")

        handle = LockHandle(
            container=container,
            path=path,
            sha=receipt.sha,
            commit_sha=receipt.commit_sha,
            record=record,
        )

        # A rival with another process name may have locked concurrently.
        try:
            rivals = [
                h for h in self._list_holders(container)
                if h.path != path and not h.stale
            ]
        except StoreError as e:
            failure = store_err(e, f"Unable to verify the lock on [{container}]")
            return self._back_off(handle, failure)
        if rivals:
            logger.info("Backing off %s, rival lock %s present", container, rivals[0].path)
            return self._back_off(handle, _contention(container, rivals[0]))

        logger.debug("Locked %s with %s", container, path)
        return Ok(handle, f"Locked the container [{container}]")

    def _back_off(self, handle: LockHandle, failure: Err) -> Err:
        """Remove a lock we just created and report ``failure``.

        A lock that cannot be removed is logged and named in the details
        under ``leaked_lock``.
        """
        unlocked = self.unlock_container(handle.container, handle.sha)
        if unlocked.ok:
            return failure
        logger.error(
            "Could not remove our lock %s while backing off: %s",
            handle.path,
            unlocked.message,
        )
        return failure.with_details(leaked_lock=handle.path, unlock_error=unlocked.message)

    def unlock_container(self, container: str, sha: str) -> Result[str | None]:
        """Remove our lock file from ``container``.

        Already-removed locks count as success so that retries after a
        partial failure are safe.
        """
        path = self.lock_path(container)
        try:
            commit_sha = self._backend.delete_file(
                path,
                f"Unlocking container [{container}]",
                self._branch,
                sha,
            )
        except StoreNotFoundError:
            logger.debug("Lock %s already removed", path)
            return Ok(None, f"container [{container}] was already unlocked")
        except StoreConflictError:
            return Err(
                ErrorKind.WRITE_CONFLICT,
                f"lock file [{path}] was replaced by another owner",
                {"container": container, "lock_file": path},
            )
        except StoreError as e:
            return store_err(e, f"Unable to unlock the container [{container}]")
        logger.debug("Unlocked %s", container)
        return Ok(commit_sha, f"Unlocked the container [{container}]")


def _contention(container: str, holder: LockHolder) -> Err:
    return Err(
        ErrorKind.LOCK_CONTENTION,
        f"container [{container}] is locked with lock file [{holder.name}]",
        {"container": container, "holder": holder.to_dict()},
    )

