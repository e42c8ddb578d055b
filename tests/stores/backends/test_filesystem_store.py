"""Tests for the local directory object store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from mrcli.result import ErrorKind
from mrcli.stores.backends import FilesystemObjectStore, filesystem
from mrcli.stores.base import (
    StoreConflictError,
    StoreConnectionError,
    StoreNotFoundError,
    StoreWriteError,
    blob_sha,
)
from mrcli.stores.concurrency import ContainerLockManager, ObjectWriter


@pytest.fixture
def fs_store(tmp_path):
    return FilesystemObjectStore(tmp_path / "store")


class TestFilesystemObjectStore:
    """Tests for the directory-backed store."""

    def test_write_read_roundtrip(self, fs_store) -> None:
        """Test that files land on disk under the store root."""
        receipt = fs_store.write_file("Companies/Companies.json", b"[]", "init", "main")

        assert (fs_store.root / "Companies" / "Companies.json").read_bytes() == b"[]"
        blob = fs_store.read_file("Companies/Companies.json")
        assert blob.sha == receipt.sha == blob_sha(b"[]")
        assert blob.modified_at is not None

    def test_head_advances_on_each_change(self, fs_store) -> None:
        """Test that the branch SHA changes with every write or delete."""
        start = fs_store.get_branch_sha("main")
        receipt = fs_store.write_file("a/a.json", b"[]", "init", "main")
        after_write = fs_store.get_branch_sha("main")
        fs_store.delete_file("a/a.json", "rm", "main", receipt.sha)

        assert len({start, after_write, fs_store.get_branch_sha("main")}) == 3
        assert after_write == receipt.commit_sha

    def test_cas_semantics(self, fs_store) -> None:
        """Test create-only and SHA-guarded writes."""
        first = fs_store.write_file("a/a.json", b"[1]", "one", "main")

        with pytest.raises(StoreConflictError):
            fs_store.write_file("a/a.json", b"[9]", "again", "main")
        fs_store.write_file("a/a.json", b"[2]", "two", "main", sha=first.sha)
        with pytest.raises(StoreConflictError):
            fs_store.write_file("a/a.json", b"[3]", "three", "main", sha=first.sha)

        assert fs_store.read_file("a/a.json").content == b"[2]"

    def test_missing_paths(self, fs_store) -> None:
        with pytest.raises(StoreNotFoundError):
            fs_store.read_file("Companies/Companies.json")
        with pytest.raises(StoreNotFoundError):
            fs_store.delete_file("Companies/x.lock", "rm", "main", "0" * 40)
        assert fs_store.list_directory("Companies") == []

    def test_paths_cannot_escape_root(self, fs_store) -> None:
        with pytest.raises(StoreNotFoundError):
            fs_store.read_file("../outside.json")

    def test_only_default_branch(self, fs_store) -> None:
        with pytest.raises(StoreNotFoundError):
            fs_store.read_file("a/a.json", ref="feature")

    def test_listing_skips_temp_files(self, fs_store) -> None:
        """Test that in-flight temp files are not listed."""
        fs_store.write_file("Studies/Studies.json", b"[]", "init", "main")
        (fs_store.root / "Studies" / ".Studies.json.abc.tmp").write_bytes(b"partial")

        assert [e.name for e in fs_store.list_directory("Studies")] == ["Studies.json"]

    def test_racing_creates_single_winner(self, fs_store) -> None:
        """Test that concurrent create-only writes have exactly one winner."""

        def create(i: int) -> bool:
            try:
                fs_store.write_file("Companies/owner.lock", str(i).encode(), "lock", "main")
            except StoreConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=6) as executor:
            outcomes = list(executor.map(create, range(6)))

        assert outcomes.count(True) == 1

    def test_two_instances_share_locks(self, tmp_path) -> None:
        """Test that locks are visible across store instances on one directory."""
        first = FilesystemObjectStore(tmp_path)
        second = FilesystemObjectStore(tmp_path)
        ContainerLockManager(first, "mrcli-a").lock_container("Companies")

        result = ContainerLockManager(second, "mrcli-b").lock_container("Companies")

        assert result.kind is ErrorKind.LOCK_CONTENTION
        assert ObjectWriter(second).read_objects("Companies").value.objects == []


class TestFilesystemFailures:
    """Tests for disk errors surfacing as store errors."""

    def test_blocked_container_directory(self, fs_store) -> None:
        """Test that a plain file where a container directory belongs is a backend error."""
        (fs_store.root / "Companies").write_bytes(b"not a directory")
        writer = ObjectWriter(fs_store)

        written = writer.write_object("Companies", [{"name": "Acme"}], "main", None)
        read = writer.read_objects("Companies")

        assert written.kind is ErrorKind.BACKEND_ERROR
        assert written.details["cause"] == "StoreReadError"
        assert read.kind is ErrorKind.BACKEND_ERROR
        assert (fs_store.root / "Companies").read_bytes() == b"not a directory"

    def test_failed_atomic_write(self, fs_store, monkeypatch) -> None:
        """Test that a failing atomic write leaves the store unchanged."""
        head = fs_store.get_branch_sha("main")

        def refuse(path, content):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(filesystem, "atomic_write", refuse)

        with pytest.raises(StoreWriteError, match="No space left"):
            fs_store.write_file("Studies/Studies.json", b"[]", "init", "main")
        result = ObjectWriter(fs_store).write_object("Studies", [], "main", None)

        assert result.kind is ErrorKind.BACKEND_ERROR
        assert result.details["cause"] == "StoreWriteError"
        assert not (fs_store.root / "Studies" / "Studies.json").exists()
        assert fs_store.get_branch_sha("main") == head

    def test_unreadable_root(self, tmp_path) -> None:
        blocker = tmp_path / "store"
        blocker.write_bytes(b"")

        with pytest.raises(StoreConnectionError):
            FilesystemObjectStore(blocker)
