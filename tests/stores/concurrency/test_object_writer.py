"""Tests for container reads and compare-and-swap writes."""

from __future__ import annotations

import json

from mrcli.result import ErrorKind
from mrcli.stores.concurrency import ObjectWriter, RepoMetadata
from mrcli.stores.concurrency.writer import container_path, encode_objects


class TestReadObjects:
    """Tests for reading container snapshots."""

    def test_read_existing_container(self, store, writer) -> None:
        """Test that objects and SHA are returned together."""
        receipt = store.write_file(
            container_path("Companies"), encode_objects([{"name": "Acme"}]), "seed", "main"
        )

        snapshot = writer.read_objects("Companies").value

        assert snapshot.objects == [{"name": "Acme"}]
        assert snapshot.sha == receipt.sha

    def test_non_array_content_is_rejected(self, store, writer) -> None:
        """Test that a JSON object instead of an array is an error."""
        store.write_file(container_path("Companies"), b'{"name": "Acme"}', "seed", "main")

        result = writer.read_objects("Companies")

        assert result.kind is ErrorKind.BACKEND_ERROR
        assert result.details["container"] == "Companies"

    def test_empty_content_with_sha_is_rejected(self, store, writer) -> None:
        """Test that a file returned without bytes is never read as an empty container."""
        receipt = store.write_file(container_path("Interactions"), b"", "truncated", "main")

        result = writer.read_objects("Interactions")

        assert result.kind is ErrorKind.BACKEND_ERROR
        assert result.details["sha"] == receipt.sha
        assert "without content" in result.message


class TestWriteObject:
    """Tests for CAS writes."""

    def test_first_write_creates_file(self, store, writer) -> None:
        """Test that prior_sha=None creates the container file."""
        result = writer.write_object("Studies", [{"name": "Pricing"}], "main", None)

        assert result.ok
        blob = store.read_file(container_path("Studies"))
        assert blob.sha == result.value
        assert json.loads(blob.content) == [{"name": "Pricing"}]

    def test_stale_sha_is_rejected_and_content_kept(self, store, writer) -> None:
        """Test that a write with an outdated SHA changes nothing."""
        first = writer.write_object("Companies", [{"name": "Acme"}], "main", None).value
        second = writer.write_object("Companies", [{"name": "Acme"}, {"name": "Beta"}], "main", first).value
        before = store.read_file(container_path("Companies")).content

        result = writer.write_object("Companies", [], "main", first)

        assert result.kind is ErrorKind.WRITE_CONFLICT
        assert result.status.code == 409
        assert result.details["container"] == "Companies"
        blob = store.read_file(container_path("Companies"))
        assert blob.content == before
        assert blob.sha == second

    def test_create_when_file_exists_is_conflict(self, writer) -> None:
        """Test that two first writes cannot both succeed."""
        assert writer.write_object("Companies", [], "main", None).ok

        assert writer.write_object("Companies", [], "main", None).kind is ErrorKind.WRITE_CONFLICT

    def test_write_to_vanished_file_is_not_found(self, store, writer) -> None:
        """Test that a SHA write to a deleted container reports NOT_FOUND."""
        sha = writer.write_object("Companies", [], "main", None).value
        store.delete_file(container_path("Companies"), "drop", "main", sha)

        assert writer.write_object("Companies", [], "main", sha).kind is ErrorKind.NOT_FOUND

    def test_write_under_lock_then_stale_write(self, store, catcher, writer) -> None:
        """Test lock, read, write, then a second write with the old SHA."""
        writer.write_object("Companies", [{"name": "Acme"}], "main", None)
        meta = catcher.catch_container(RepoMetadata.for_containers(["Companies"])).value
        state = meta.containers["Companies"]

        merged = state.objects + [{"name": "Beta"}]
        written = writer.write_object("Companies", merged, meta.branch.name, state.object_sha)
        stale = writer.write_object("Companies", [{"name": "Gamma"}], meta.branch.name, state.object_sha)
        catcher.release_container(meta)

        assert written.ok
        assert stale.kind is ErrorKind.WRITE_CONFLICT
        assert writer.read_objects("Companies").value.objects == merged


class TestCreateContainer:
    """Tests for container initialisation."""

    def test_creates_missing_container(self, store) -> None:
        """Test that a missing container becomes an empty array."""
        result = ObjectWriter(store).create_container("Interactions")

        assert result.ok and result.value
        assert store.read_file(container_path("Interactions")).content == b"[]"

    def test_existing_container_is_untouched(self, store) -> None:
        """Test that an existing container keeps its objects."""
        writer = ObjectWriter(store)
        writer.write_object("Interactions", [{"name": "Call"}], "main", None)

        result = writer.create_container("Interactions")

        assert result.ok and result.value is None
        assert writer.read_objects("Interactions").value.objects == [{"name": "Call"}]
