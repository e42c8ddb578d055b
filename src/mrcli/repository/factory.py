"""Wiring of repositories onto an object store backend."""

from __future__ import annotations

import logging
from datetime import timedelta

from mrcli.common.resilience import RetryConfig, RetryPolicy
from mrcli.repository.container import ContainerRepository
from mrcli.repository.policies import get_policy
from mrcli.result import Ok, Result
from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.concurrency.catcher import ContainerCatcher
from mrcli.stores.concurrency.locks import Clock, ContainerLockManager, StaleLockPolicy
from mrcli.stores.concurrency.writer import ObjectWriter

logger = logging.getLogger(__name__)

CONTAINERS: tuple[str, ...] = ("Studies", "Companies", "Interactions")


def _branch_of(backend: ObjectStoreBackend) -> str:
    return getattr(backend, "default_branch", "main")


def create_catcher(
    backend: ObjectStoreBackend,
    process_name: str = "mrcli",
    stale_after: timedelta | None = timedelta(minutes=10),
    clock: Clock | None = None,
) -> ContainerCatcher:
    """Build the lock manager, writer and catcher for ``backend``.

    Args:
        backend: Object store holding the containers.
        process_name: Stem of the lock files this process creates.
        stale_after: Age after which locks are broken; ``None`` never breaks.
        clock: Source of the current time.
    """
    branch = _branch_of(backend)
    stale_policy = StaleLockPolicy(max_age=stale_after) if stale_after else StaleLockPolicy.never()
    locks = ContainerLockManager(
        backend,
        process_name=process_name,
        branch=branch,
        stale_policy=stale_policy,
        clock=clock,
    )
    return ContainerCatcher(locks, ObjectWriter(backend, branch=branch))


def create_repository(
    container: str,
    backend: ObjectStoreBackend | None = None,
    *,
    catcher: ContainerCatcher | None = None,
    process_name: str = "mrcli",
    stale_after: timedelta | None = timedelta(minutes=10),
    write_attempts: int = 3,
    retry: RetryPolicy | None = None,
    clock: Clock | None = None,
) -> ContainerRepository:
    """Create the repository for ``container`` ("Companies", "interactions", ...).

    Example:
        >>> companies = create_repository("Companies", MemoryObjectStore())
        >>> companies.get_all().value
        []
    """
    if catcher is None:
        if backend is None:
            raise ValueError("Either a backend or a catcher is required")
        catcher = create_catcher(backend, process_name, stale_after, clock)
    retry = retry or RetryPolicy(RetryConfig(max_attempts=write_attempts, base_delay=0.5))
    return ContainerRepository(get_policy(container), catcher, retry=retry, clock=clock)


def create_containers(
    backend: ObjectStoreBackend,
    containers: tuple[str, ...] = CONTAINERS,
) -> Result[dict[str, str | None]]:
    """Create each container as an empty array, skipping existing ones.

    Returns:
        ``Ok({container: new_sha or None if it already existed})``; the
        first failure is returned as ``Err``.
    """
    writer = ObjectWriter(backend, branch=_branch_of(backend))
    created: dict[str, str | None] = {}
    for container in containers:
        result = writer.create_container(container)
        if not result.ok:
            return result.with_details(created=created)
        created[container] = result.value
        if result.value:
            logger.info("Created container %s", container)
    made = [name for name, sha in created.items() if sha]
    return Ok(created, f"Created [{len(made)}] of [{len(containers)}] containers.")
