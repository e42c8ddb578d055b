"""Container locking and compare-and-swap writes.

The layers, bottom up:

1. Lock Manager: one lock file per held container
2. Object Writer: whole-container reads and CAS writes
3. Container Catcher: all-or-nothing locking of container sets and release

Example:
    >>> from mrcli.stores.concurrency import ContainerCatcher, RepoMetadata
    >>>
    >>> caught = catcher.catch_container(RepoMetadata.for_containers(["Companies"]))
    >>> if caught.ok:
    ...     meta = caught.value
    ...     state = meta.containers["Companies"]
    ...     writer.write_object("Companies", state.objects + [obj], meta.branch.name, state.object_sha)
    ...     catcher.release_container(meta)
"""

from mrcli.stores.concurrency.atomic import AtomicFileWriter, AtomicOperation, atomic_write
from mrcli.stores.concurrency.catcher import (
    BranchRef,
    ContainerCatcher,
    ContainerState,
    RepoMetadata,
)
from mrcli.stores.concurrency.locks import (
    LOCK_SUFFIX,
    ContainerLockManager,
    LockHandle,
    LockHolder,
    LockRecord,
    LockStatus,
    StaleLockPolicy,
)
from mrcli.stores.concurrency.writer import (
    ContainerSnapshot,
    ObjectWriter,
    container_path,
    encode_objects,
)

__all__ = [
    # Locks
    "LOCK_SUFFIX",
    "ContainerLockManager",
    "LockHandle",
    "LockHolder",
    "LockRecord",
    "LockStatus",
    "StaleLockPolicy",
    # Writer
    "ContainerSnapshot",
    "ObjectWriter",
    "container_path",
    "encode_objects",
    # Catcher
    "BranchRef",
    "ContainerCatcher",
    "ContainerState",
    "RepoMetadata",
    # Atomic file operations
    "AtomicFileWriter",
    "AtomicOperation",
    "atomic_write",
]
