"""Container reads and compare-and-swap writes.

A container is one JSON array file, ``<Type>/<Type>.json``. Reads return
the objects together with the file SHA; writes replace the whole file and
succeed only if the SHA supplied is still current. A rejected write leaves
the stored content untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from mrcli.result import Err, ErrorKind, Ok, Result
from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.base import StoreConflictError, StoreError, StoreNotFoundError, join_path
from mrcli.stores.concurrency._errors import store_err

logger = logging.getLogger(__name__)


@dataclass
class ContainerSnapshot:
    """Objects of one container as read at a given SHA.

    ``sha`` is ``None`` when the container file does not exist yet.
    """

    container: str
    objects: list[dict[str, Any]] = field(default_factory=list)
    sha: str | None = None


def container_path(container: str) -> str:
    """Path of the JSON file backing ``container``."""
    return join_path(container, f"{container}.json")


def encode_objects(objects: list[dict[str, Any]]) -> bytes:
    return json.dumps(objects, ensure_ascii=False).encode("utf-8")


class ObjectWriter:
    """Reads container snapshots and writes them back with CAS.

    Example:
        >>> writer = ObjectWriter(store)
        >>> snap = writer.read_objects("Companies").unwrap()
        >>> writer.write_object("Companies", snap.objects + [{"name": "Acme"}], "main", snap.sha)
    """

    def __init__(self, backend: ObjectStoreBackend, branch: str = "main") -> None:
        self._backend = backend
        self._branch = branch

    @property
    def backend(self) -> ObjectStoreBackend:
        return self._backend

    def read_objects(self, container: str, ref: str | None = None) -> Result[ContainerSnapshot]:
        """Read every object of ``container``.

        A container that has never been written reads as an empty array
        with no SHA.
        """
        path = container_path(container)
        try:
            blob = self._backend.read_file(path, ref=ref or self._branch)
        except StoreNotFoundError:
            logger.debug("Container %s does not exist yet", container)
            return Ok(ContainerSnapshot(container=container), f"[{path}] is empty")
        except StoreError as e:
            return store_err(e, f"Unable to read [{path}]", container=container)

        # An existing file always holds at least "[]"; empty bytes with a SHA
        # mean the backend did not return the content.
        if not blob.content:
            return Err(
                ErrorKind.BACKEND_ERROR,
                f"[{path}] was returned without content",
                {"container": container, "sha": blob.sha},
            )
        try:
            objects = json.loads(blob.content)
        except ValueError as e:
            return Err(
                ErrorKind.BACKEND_ERROR,
                f"[{path}] is not valid JSON: {e}",
                {"container": container, "sha": blob.sha},
            )
        if not isinstance(objects, list):
            return Err(
                ErrorKind.BACKEND_ERROR,
                f"[{path}] does not hold a JSON array",
                {"container": container, "sha": blob.sha},
            )
        return Ok(
            ContainerSnapshot(container=container, objects=objects, sha=blob.sha),
            f"read and returned [{path}]",
        )

    def write_object(
        self,
        container: str,
        objects: list[dict[str, Any]],
        branch: str | None,
        prior_sha: str | None,
    ) -> Result[str]:
        """Replace the container file if it is still at ``prior_sha``.

        Args:
            container: Container to write.
            objects: Complete merged object list.
            branch: Branch to write to; the writer's branch when ``None``.
            prior_sha: SHA read under the lock, ``None`` for a first write.

        Returns:
            ``Ok(new_sha)``, or ``Err`` with ``WRITE_CONFLICT`` when the file
            changed since it was read, ``NOT_FOUND`` when it vanished,
            ``PERMISSION_DENIED`` or ``BACKEND_ERROR`` otherwise.
        """
        path = container_path(container)
        try:
            receipt = self._backend.write_file(
                path,
                encode_objects(objects),
                f"Update objects in container [{container}]",
                branch or self._branch,
                sha=prior_sha,
            )
        except StoreError as e:
            if isinstance(e, StoreConflictError):
                logger.warning("Write conflict on %s: %s", path, e)
            return store_err(e, f"Unable to write objects to [{path}]", container=container)

        logger.debug("Wrote %d objects to %s sha=%s", len(objects), path, receipt.sha[:7])
        return Ok(receipt.sha, f"wrote [{path}]")

    def create_container(self, container: str, branch: str | None = None) -> Result[str | None]:
        """Create ``container`` as an empty array if it does not exist."""
        snapshot = self.read_objects(container)
        if not snapshot.ok:
            return snapshot
        if snapshot.value.sha is not None:
            return Ok(None, f"container [{container}] already exists")
        return self.write_object(container, [], branch, None)

