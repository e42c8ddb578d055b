"""Object repository for one container type.

Every write runs as one unit of work: catch the containers it touches,
merge the change into the objects read under the lock, write each changed
container with compare-and-swap, then release. A write rejected because the
container changed underneath re-reads only that container and merges again;
containers already written in the same operation are left alone.

Each unit of work is tracked by a ``WriteOperation`` that records the state
transitions it went through:

    IDLE -> LOCKING -> (LOCK_FAILED -> IDLE)
                     | LOCKED -> READING -> MERGING -> WRITING
                         -> (WRITE_CONFLICT -> READING ...)
                          | WRITE_OK -> RELEASING -> IDLE

Locks are released on every path once they were taken.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from mrcli.common.resilience import RetryConfig, RetryPolicy
from mrcli.observability.logging import log_context
from mrcli.repository.policies import LINK_FIELDS, ContainerPolicy, get_policy
from mrcli.result import Err, ErrorKind, Ok, Result
from mrcli.stores.base import StoreError, StoreNotFoundError
from mrcli.stores.concurrency.catcher import ContainerCatcher, RepoMetadata
from mrcli.stores.concurrency.locks import Clock, utc_now

logger = logging.getLogger(__name__)

Obj = dict[str, Any]


# =============================================================================
# Write Operation State
# =============================================================================


class OperationState(Enum):
    """States of one write operation."""

    IDLE = "idle"
    LOCKING = "locking"
    LOCK_FAILED = "lock_failed"
    LOCKED = "locked"
    READING = "reading"
    MERGING = "merging"
    WRITING = "writing"
    WRITE_CONFLICT = "write_conflict"
    WRITE_OK = "write_ok"
    RELEASING = "releasing"


@dataclass
class WriteOperation:
    """Bookkeeping for one catch/merge/write/release cycle.

    Attributes:
        kind: "create", "update" or "delete".
        containers: Containers caught by the operation.
        operation_id: Short id attached to every log line of the operation.
        state: Current state.
        history: Every state entered, in order.
        attempts: Merge/write attempts made.
    """

    kind: str
    containers: tuple[str, ...]
    operation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: OperationState = OperationState.IDLE
    history: list[OperationState] = field(default_factory=lambda: [OperationState.IDLE])
    attempts: int = 0

    def transition(self, state: OperationState) -> None:
        logger.debug("%s %s: %s -> %s", self.kind, self.operation_id, self.state.name, state.name)
        self.state = state
        self.history.append(state)


@dataclass
class MergePlan:
    """What a merge wants written.

    Attributes:
        objects: New object list for each container that changes.
        removed: Names removed from each container.
        files: Content files to delete once the containers are written.
        value: Payload returned to the caller on success.
        message: Success message.
    """

    objects: dict[str, list[Obj]]
    removed: dict[str, list[str]] = field(default_factory=dict)
    files: list[str] = field(default_factory=list)
    value: Any = None
    message: str = ""


Merge = Callable[[dict[str, list[Obj]]], Result[MergePlan]]


def _same_name(obj: Obj, name: str) -> bool:
    value = obj.get("name")
    return isinstance(value, str) and value.lower() == name.lower()


# =============================================================================
# Repository
# =============================================================================


class ContainerRepository:
    """CRUD access to the objects of one container.

    Example:
        >>> companies = ContainerRepository(COMPANIES, catcher)
        >>> companies.create_obj([{"name": "Acme", "linked_interactions": {}}])
        >>> companies.find_by_name("acme").value[0]["name"]
        'Acme'
        >>> companies.delete_obj("Acme")
    """

    def __init__(
        self,
        policy: ContainerPolicy,
        catcher: ContainerCatcher,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            policy: Rules of the object type.
            catcher: Catcher used to lock, read and release containers.
            retry: Bounds and backoff for write-conflict retries.
            clock: Source of creation and modification timestamps.
        """
        self._policy = policy
        self._catcher = catcher
        self._writer = catcher.writer
        self._retry = retry or RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.5))
        self._clock = clock or utc_now
        self.last_operation: WriteOperation | None = None

    @property
    def name(self) -> str:
        return self._policy.name

    @property
    def policy(self) -> ContainerPolicy:
        return self._policy

    def _now(self) -> str:
        now: datetime = self._clock()
        return now.isoformat()

    # -------------------------------------------------------------------------
    # Reads (never lock)
    # -------------------------------------------------------------------------

    def get_all(self) -> Result[list[Obj]]:
        """Return every object in the container."""
        return self._writer.read_objects(self.name).map(lambda snapshot: snapshot.objects)

    def find_by_name(self, name: str) -> Result[list[Obj]]:
        """Return objects whose name matches ``name`` case-insensitively."""
        objects = self.get_all()
        if not objects.ok:
            return objects
        found = [obj for obj in objects.value if _same_name(obj, name)]
        if not found:
            return Err(
                ErrorKind.NOT_FOUND,
                f"No [{self.name}] object named [{name}] was found.",
                {"container": self.name, "name": name},
            )
        return Ok(found, f"Found [{len(found)}] [{self.name}] object(s) named [{name}].")

    def find_by_x(self, attribute: str, value: Any) -> Result[list[Obj]]:
        """Return objects whose ``attribute`` equals ``value``.

        ``name`` is compared case-insensitively, everything else exactly.
        """
        if attribute == "name" and isinstance(value, str):
            return self.find_by_name(value)
        objects = self.get_all()
        if not objects.ok:
            return objects
        found = [obj for obj in objects.value if attribute in obj and obj[attribute] == value]
        if not found:
            return Err(
                ErrorKind.NOT_FOUND,
                f"No [{self.name}] object with [{attribute} = {value}] was found.",
                {"container": self.name, "attribute": attribute, "value": value},
            )
        return Ok(found, f"Found [{len(found)}] [{self.name}] object(s) with [{attribute} = {value}].")

    @staticmethod
    def link_obj(objs: Iterable[Obj]) -> dict[str, str]:
        """Map each object's name to the SHA-256 of that name."""
        return {
            obj["name"]: hashlib.sha256(obj["name"].encode("utf-8")).hexdigest()
            for obj in objs
        }

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_obj(self, objs: list[Obj]) -> Result[list[str]]:
        """Append ``objs`` to the container.

        Duplicate names are not checked.
        """
        if not objs:
            return Err(ErrorKind.INVALID_REQUEST, "No objects to create.", {"container": self.name})
        for obj in objs:
            if not isinstance(obj, dict) or not isinstance(obj.get("name"), str) or not obj["name"]:
                return Err(
                    ErrorKind.INVALID_REQUEST,
                    "Every object needs a non-empty string [name].",
                    {"container": self.name, "object": obj},
                )

        now = self._now()
        new_objects = []
        for obj in objs:
            created = dict(obj)
            created.setdefault("creation_date", now)
            created.setdefault("modification_date", now)
            new_objects.append(created)
        names = [obj["name"] for obj in new_objects]

        def merge(snapshots: dict[str, list[Obj]]) -> Result[MergePlan]:
            return Ok(MergePlan(
                objects={self.name: snapshots[self.name] + new_objects},
                value=names,
                message=f"Created [{len(names)}] [{self.name}] object(s).",
            ))

        return self._run("create", (self.name,), merge)

    def update_obj(self, name: str, updates: Obj, system: bool = False) -> Result[int]:
        """Set ``updates`` on every object named ``name``.

        Non-system callers may only set whitelisted fields; anything else is
        rejected before a lock is taken.

        Returns:
            ``Ok(number_of_objects_updated)``.
        """
        if not updates:
            return Err(ErrorKind.INVALID_REQUEST, "No fields to update.", {"container": self.name})
        if not system:
            rejected = self._policy.rejected_fields(list(updates))
            if rejected:
                return Err(
                    ErrorKind.INVALID_FIELD,
                    f"Updating the key(s) [{', '.join(rejected)}] is not supported.",
                    {
                        "container": self.name,
                        "rejected": rejected,
                        "allowed": sorted(self._policy.whitelist),
                    },
                )

        now = self._now()

        def merge(snapshots: dict[str, list[Obj]]) -> Result[MergePlan]:
            objects = snapshots[self.name]
            matched = 0
            for obj in objects:
                if _same_name(obj, name):
                    obj.update(updates)
                    obj["modification_date"] = now
                    matched += 1
            if not matched:
                return Err(
                    ErrorKind.NOT_FOUND,
                    f"No [{self.name}] object named [{name}] was found.",
                    {"container": self.name, "name": name},
                )
            fields = ", ".join(f"{k} = {v}" for k, v in updates.items())
            return Ok(MergePlan(
                objects={self.name: objects},
                value=matched,
                message=f"Updated [{self.name}] object of the name [{name}] with [{fields}].",
            ))

        return self._run("update", (self.name,), merge)

    def delete_obj(self, name: str, allow_orphans: bool = False) -> Result[dict[str, list[str]]]:
        """Remove the object named ``name``.

        Linked objects in the policy's cascade containers are removed too and
        the deleted names are scrubbed from the link maps of the other caught
        containers. With ``allow_orphans`` only this container is touched.

        Returns:
            ``Ok({container: [removed names]})``.
        """
        containers = self._policy.delete_containers(allow_orphans)
        now = self._now()

        def merge(snapshots: dict[str, list[Obj]]) -> Result[MergePlan]:
            targets = [obj for obj in snapshots[self.name] if _same_name(obj, name)]
            if not targets:
                return Err(
                    ErrorKind.NOT_FOUND,
                    f"No [{self.name}] object named [{name}] was found.",
                    {"container": self.name, "name": name},
                )
            plan = MergePlan(
                objects={self.name: [o for o in snapshots[self.name] if not _same_name(o, name)]},
                removed={self.name: [t["name"] for t in targets]},
                files=self._content_files(self._policy, targets),
                message=(
                    f"Deleted [{self.name}] object of the name [{name}]"
                    + (", and links in associated objects." if not allow_orphans else ".")
                ),
            )
            if not allow_orphans:
                for cascade in self._policy.cascades:
                    self._cascade(plan, snapshots, targets, cascade)
                self._unlink(plan, snapshots, containers, now)
            plan.value = plan.removed
            return Ok(plan)

        return self._run("delete", containers, merge)

    def _cascade(
        self,
        plan: MergePlan,
        snapshots: dict[str, list[Obj]],
        targets: list[Obj],
        cascade: str,
    ) -> None:
        linked: set[str] = set()
        for target in targets:
            links = target.get(LINK_FIELDS[cascade])
            if isinstance(links, dict):
                linked.update(n.lower() for n in links)
        victims = [
            obj for obj in snapshots[cascade]
            if isinstance(obj.get("name"), str) and obj["name"].lower() in linked
        ]
        plan.objects[cascade] = [obj for obj in snapshots[cascade] if not any(obj is v for v in victims)]
        plan.removed[cascade] = [v["name"] for v in victims]
        plan.files.extend(self._content_files(get_policy(cascade), victims))

    def _unlink(
        self,
        plan: MergePlan,
        snapshots: dict[str, list[Obj]],
        containers: Iterable[str],
        now: str,
    ) -> None:
        for container in containers:
            objects = plan.objects.get(container, snapshots[container])
            changed = False
            for removed_from, names in plan.removed.items():
                if removed_from == container or not names:
                    continue
                link_field = LINK_FIELDS[removed_from]
                for obj in objects:
                    links = obj.get(link_field)
                    if not isinstance(links, dict):
                        continue
                    for removed_name in names:
                        if removed_name in links:
                            del links[removed_name]
                            obj["modification_date"] = now
                            changed = True
            if changed or container in plan.objects:
                plan.objects[container] = objects

    @staticmethod
    def _content_files(policy: ContainerPolicy, objs: list[Obj]) -> list[str]:
        if not policy.content_field:
            return []
        return [
            obj[policy.content_field].lstrip("/")
            for obj in objs
            if isinstance(obj.get(policy.content_field), str) and obj[policy.content_field]
        ]

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _run(self, kind: str, containers: tuple[str, ...], merge: Merge) -> Result[Any]:
        op = WriteOperation(kind=kind, containers=containers)
        self.last_operation = op
        with log_context(operation_id=op.operation_id, operation=kind, container=self.name):
            op.transition(OperationState.LOCKING)
            meta = RepoMetadata.for_containers(containers)
            caught = self._catcher.catch_container(meta)
            if not caught.ok:
                logger.info("Unable to catch %s: %s", ", ".join(containers), caught.message)
                op.transition(OperationState.LOCK_FAILED)
                op.transition(OperationState.IDLE)
                return caught
            op.transition(OperationState.LOCKED)

            outcome: Result[Any] | None = None
            try:
                outcome = self._write_cycle(op, meta, containers, merge)
            finally:
                op.transition(OperationState.RELEASING)
                released = self._catcher.release_container(meta)
                op.transition(OperationState.IDLE)

            if not released.ok:
                if outcome.ok:
                    return released.with_details(result=outcome.value)
                return outcome.with_details(release_failure=released.message)
            return outcome

    def _write_cycle(
        self,
        op: WriteOperation,
        meta: RepoMetadata,
        order: tuple[str, ...],
        merge: Merge,
    ) -> Result[Any]:
        op.transition(OperationState.READING)
        branch = meta.branch.name if meta.branch else None
        # Planning snapshots stay at their pre-write content so a retried
        # merge reproduces the same plan for containers already written.
        snapshots = {name: meta.containers[name].objects for name in order}
        written: dict[str, str] = {}
        last = self._retry.max_attempts - 1

        for attempt in self._retry.attempts():
            op.attempts = attempt + 1
            op.transition(OperationState.MERGING)
            planned = merge(copy.deepcopy(snapshots))
            if not planned.ok:
                return planned
            plan = planned.value

            op.transition(OperationState.WRITING)
            failure: Err | None = None
            for name in order:
                if name not in plan.objects or name in written:
                    continue
                state = meta.containers[name]
                wrote = self._writer.write_object(name, plan.objects[name], branch, state.object_sha)
                if not wrote.ok:
                    failure = wrote
                    break
                state.object_sha = wrote.value
                written[name] = wrote.value

            if failure is None:
                op.transition(OperationState.WRITE_OK)
                return self._remove_files(plan, branch)

            if failure.kind is not ErrorKind.WRITE_CONFLICT:
                return self._write_failure(failure, plan, written, order)
            op.transition(OperationState.WRITE_CONFLICT)
            if attempt == last:
                break

            conflicted = failure.details.get("container", order[0])
            logger.warning(
                "Write conflict on %s (attempt %d of %d), re-reading",
                conflicted,
                attempt + 1,
                self._retry.max_attempts,
            )
            self._retry.pause(attempt)
            op.transition(OperationState.READING)
            reread = self._writer.read_objects(conflicted)
            if not reread.ok:
                return self._write_failure(reread, plan, written, order)
            snapshots[conflicted] = reread.value.objects
            meta.containers[conflicted].objects = reread.value.objects
            meta.containers[conflicted].object_sha = reread.value.sha

        logger.error("Giving up on %s after %d conflicting writes", op.kind, op.attempts)
        return self._write_failure(failure, plan, written, order)

    def _write_failure(
        self,
        failure: Err,
        plan: MergePlan,
        written: dict[str, str],
        order: tuple[str, ...],
    ) -> Err:
        if not written:
            return failure
        unwritten = [name for name in order if name in plan.objects and name not in written]
        unremoved = {name: plan.removed[name] for name in unwritten if plan.removed.get(name)}
        logger.error(
            "Partial write: wrote %s, failed on %s", ", ".join(written), ", ".join(unwritten)
        )
        described = "; ".join(f"{c}: {', '.join(n)}" for c, n in unremoved.items())
        return Err(
            ErrorKind.ORPHAN_RISK,
            f"Wrote [{', '.join(written)}] but not [{', '.join(unwritten)}]"
            + (f"; objects not removed [{described}]." if described else "."),
            {
                "written": list(written),
                "unwritten": unwritten,
                "unremoved": unremoved,
                "cause": failure.kind.name,
                "cause_message": failure.message,
            },
        )

    def _remove_files(self, plan: MergePlan, branch: str | None) -> Result[Any]:
        if not plan.files:
            return Ok(plan.value, plan.message)

        backend = self._writer.backend
        failed: dict[str, str] = {}
        for path in plan.files:
            try:
                blob = backend.read_file(path, ref=branch)
                backend.delete_file(path, f"Delete content file [{path}]", branch or "main", blob.sha)
            except StoreNotFoundError:
                logger.info("Content file %s already removed", path)
            except StoreError as e:
                logger.error("Unable to delete content file %s: %s", path, e)
                failed[path] = str(e)

        if failed:
            return Err(
                ErrorKind.ORPHAN_RISK,
                f"Objects were removed but content file(s) [{', '.join(failed)}] were not.",
                {"removed": plan.value, "unremoved_files": failed},
            )
        return Ok(plan.value, plan.message)
