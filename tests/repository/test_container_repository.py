"""Tests for the Companies, Interactions and Studies repositories."""

from __future__ import annotations

import hashlib
import json

import pytest

from mrcli.repository import ContainerRepository, OperationState, get_policy
from mrcli.result import Err, ErrorKind
from mrcli.stores.backends import MemoryObjectStore
from mrcli.stores.base import StorePermissionError
from mrcli.stores.concurrency import ContainerCatcher, ContainerLockManager, ObjectWriter
from mrcli.stores.concurrency.writer import container_path, encode_objects

S = OperationState


def _link(*names: str) -> dict[str, str]:
    return {n: hashlib.sha256(n.encode()).hexdigest() for n in names}


def _seed(store, container, objects) -> None:
    store.write_file(container_path(container), encode_objects(objects), "seed", "main")


def _objects(store, container):
    return json.loads(store.read_file(container_path(container)).content)


def _locks(store):
    return [
        e.path
        for container in ("Companies", "Interactions", "Studies")
        for e in store.list_directory(container)
        if e.name.endswith(".lock")
    ]


class SneakyWriter(ObjectWriter):
    """Lets another writer slip in before the first ``times`` writes."""

    def __init__(self, backend, times: int = 1) -> None:
        super().__init__(backend)
        self.times = times
        self.calls = 0

    def write_object(self, container, objects, branch, prior_sha):
        self.calls += 1
        if self.calls <= self.times:
            current = self.read_objects(container).value
            sneaked = current.objects + [{"name": f"Sneaky {self.calls}"}]
            super().write_object(container, sneaked, branch, current.sha)
        return super().write_object(container, objects, branch, prior_sha)


class RefusingWriter(ObjectWriter):
    """Refuses writes to one container."""

    def __init__(self, backend, refuse: str) -> None:
        super().__init__(backend)
        self.refuse = refuse

    def write_object(self, container, objects, branch, prior_sha):
        if container == self.refuse:
            return Err(ErrorKind.PERMISSION_DENIED, "denied", {"container": container})
        return super().write_object(container, objects, branch, prior_sha)


class LockStealingWriter(ObjectWriter):
    """Replaces our lock file while writing, so release fails."""

    def write_object(self, container, objects, branch, prior_sha):
        lock = self.backend.read_file(f"{container}/mrcli-test.lock")
        self.backend.write_file(lock.path, b"{}", "steal", "main", sha=lock.sha)
        return super().write_object(container, objects, branch, prior_sha)


class PdfProtectingStore(MemoryObjectStore):
    def delete_file(self, path, message, branch, sha):
        if path.endswith(".pdf"):
            raise StorePermissionError(f"403 on {path}")
        return super().delete_file(path, message, branch, sha)


@pytest.fixture
def make_repo(lock_manager, writer, clock, no_wait_retry):
    def make(container: str, writer_: ObjectWriter | None = None) -> ContainerRepository:
        catcher = ContainerCatcher(lock_manager, writer_ or writer)
        return ContainerRepository(get_policy(container), catcher, retry=no_wait_retry, clock=clock)

    return make


@pytest.fixture
def companies(make_repo):
    return make_repo("Companies")


@pytest.fixture
def linked_store(store):
    """Two companies and two interactions linked to each other."""
    _seed(store, "Companies", [
        {"name": "Acme", "region": "AMER", "linked_interactions": _link("Call")},
        {"name": "Beta", "region": "EMEA", "linked_interactions": _link("Call", "Review")},
    ])
    _seed(store, "Interactions", [
        {"name": "Call", "url": "Interactions/call.pdf", "linked_companies": _link("Acme", "Beta")},
        {"name": "Review", "url": "Interactions/review.pdf", "linked_companies": _link("Beta")},
    ])
    store.write_file("Interactions/call.pdf", b"%PDF-call", "upload", "main")
    store.write_file("Interactions/review.pdf", b"%PDF-review", "upload", "main")
    return store


class TestReads:
    """Tests for lock-free reads."""

    def test_get_all_empty_container(self, companies) -> None:
        assert companies.get_all().value == []

    def test_find_by_name_is_case_insensitive(self, linked_store, companies) -> None:
        """Test that name lookups ignore case."""
        result = companies.find_by_name("ACME")

        assert [o["name"] for o in result.value] == ["Acme"]
        assert result.message == "Found [1] [Companies] object(s) named [ACME]."

    def test_find_by_name_missing(self, linked_store, companies) -> None:
        result = companies.find_by_name("Gamma")

        assert result.kind is ErrorKind.NOT_FOUND
        assert result.status.code == 404

    def test_find_by_x(self, linked_store, companies) -> None:
        """Test attribute lookups and the name shortcut."""
        assert [o["name"] for o in companies.find_by_x("region", "EMEA").value] == ["Beta"]
        assert [o["name"] for o in companies.find_by_x("name", "beta").value] == ["Beta"]
        assert companies.find_by_x("region", "emea").kind is ErrorKind.NOT_FOUND

    def test_reads_take_no_locks(self, linked_store, companies) -> None:
        head = linked_store.get_branch_sha("main")

        companies.get_all()
        companies.find_by_name("Acme")

        assert linked_store.get_branch_sha("main") == head
        assert companies.last_operation is None

    def test_link_obj(self) -> None:
        links = ContainerRepository.link_obj([{"name": "Acme"}, {"name": "Beta"}])

        assert links == {
            "Acme": hashlib.sha256(b"Acme").hexdigest(),
            "Beta": hashlib.sha256(b"Beta").hexdigest(),
        }


class TestCreate:
    """Tests for create_obj."""

    def test_create_appends_with_dates(self, store, clock, companies) -> None:
        """Test that created objects get timestamps and locks are released."""
        result = companies.create_obj([{"name": "Acme", "region": "AMER"}])

        assert result.ok
        assert result.value == ["Acme"]
        assert result.message == "Created [1] [Companies] object(s)."
        stored = _objects(store, "Companies")
        assert stored == [{
            "name": "Acme",
            "region": "AMER",
            "creation_date": clock().isoformat(),
            "modification_date": clock().isoformat(),
        }]
        assert _locks(store) == []

    def test_create_records_state_history(self, companies) -> None:
        companies.create_obj([{"name": "Acme"}])

        assert companies.last_operation.history == [
            S.IDLE, S.LOCKING, S.LOCKED, S.READING, S.MERGING,
            S.WRITING, S.WRITE_OK, S.RELEASING, S.IDLE,
        ]
        assert companies.last_operation.attempts == 1

    def test_create_keeps_existing_objects(self, linked_store, companies) -> None:
        companies.create_obj([{"name": "Gamma"}, {"name": "Delta"}])

        names = [o["name"] for o in _objects(linked_store, "Companies")]
        assert names == ["Acme", "Beta", "Gamma", "Delta"]

    @pytest.mark.parametrize("objs", [[], [{"region": "AMER"}], [{"name": ""}], ["Acme"]])
    def test_create_rejects_invalid_objects(self, store, companies, objs) -> None:
        head = store.get_branch_sha("main")

        result = companies.create_obj(objs)

        assert result.kind is ErrorKind.INVALID_REQUEST
        assert store.get_branch_sha("main") == head

    def test_create_while_locked(self, store, clock, companies) -> None:
        """Test that a held container fails fast with LOCK_CONTENTION."""
        ContainerLockManager(store, "mrcli-other", clock=clock).lock_container("Companies")

        result = companies.create_obj([{"name": "Acme"}])

        assert result.kind is ErrorKind.LOCK_CONTENTION
        assert result.status.code == 423
        assert companies.last_operation.history == [S.IDLE, S.LOCKING, S.LOCK_FAILED, S.IDLE]
        assert companies.get_all().value == []


class TestUpdate:
    """Tests for update_obj."""

    def test_update_whitelisted_field(self, linked_store, clock, companies) -> None:
        """Test that an allowed field is set and modification_date moves."""
        clock.advance(hours=1)

        result = companies.update_obj("acme", {"description": "Anvils"})

        assert result.ok and result.value == 1
        assert result.message == "Updated [Companies] object of the name [acme] with [description = Anvils]."
        acme = _objects(linked_store, "Companies")[0]
        assert acme["description"] == "Anvils"
        assert acme["modification_date"] == clock().isoformat()

    def test_rejected_field_takes_no_lock(self, linked_store, companies) -> None:
        """Test that non-whitelisted fields are refused before locking."""
        head = linked_store.get_branch_sha("main")

        result = companies.update_obj("Acme", {"name": "Acme Corp", "region": "APAC"})

        assert result.kind is ErrorKind.INVALID_FIELD
        assert result.status.code == 403
        assert result.details["rejected"] == ["name"]
        assert "region" in result.details["allowed"]
        assert linked_store.get_branch_sha("main") == head
        assert companies.last_operation is None

    def test_system_update_bypasses_whitelist(self, linked_store, companies) -> None:
        result = companies.update_obj("Acme", {"linked_interactions": {}}, system=True)

        assert result.ok
        assert _objects(linked_store, "Companies")[0]["linked_interactions"] == {}

    def test_update_missing_object(self, linked_store, companies) -> None:
        """Test that NOT_FOUND still releases the locks."""
        result = companies.update_obj("Gamma", {"description": "x"})

        assert result.kind is ErrorKind.NOT_FOUND
        assert _locks(linked_store) == []

    def test_empty_update(self, companies) -> None:
        assert companies.update_obj("Acme", {}).kind is ErrorKind.INVALID_REQUEST

    def test_study_whitelist(self, store, make_repo) -> None:
        studies = make_repo("Studies")
        _seed(store, "Studies", [{"name": "Pricing"}])

        assert studies.update_obj("Pricing", {"public": True}).ok
        assert studies.update_obj("Pricing", {"region": "AMER"}).kind is ErrorKind.INVALID_FIELD


class TestDelete:
    """Tests for delete_obj and link maintenance."""

    def test_company_delete_cascades(self, linked_store, clock, companies) -> None:
        """Test that linked interactions go and links to them are scrubbed."""
        result = companies.delete_obj("Acme")

        assert result.ok
        assert result.value == {"Companies": ["Acme"], "Interactions": ["Call"]}
        assert result.message == "Deleted [Companies] object of the name [Acme], and links in associated objects."
        assert _objects(linked_store, "Companies") == [
            {"name": "Beta", "region": "EMEA", "linked_interactions": _link("Review"),
             "modification_date": clock().isoformat()},
        ]
        interactions = _objects(linked_store, "Interactions")
        assert [i["name"] for i in interactions] == ["Review"]
        assert interactions[0]["linked_companies"] == _link("Beta")
        assert [e.name for e in linked_store.list_directory("Interactions")] == [
            "Interactions.json",
            "review.pdf",
        ]
        assert _locks(linked_store) == []

    def test_company_delete_allow_orphans(self, linked_store, companies) -> None:
        """Test that allow_orphans leaves every other container untouched."""
        before = linked_store.read_file(container_path("Interactions")).sha

        result = companies.delete_obj("Acme", allow_orphans=True)

        assert result.ok
        assert result.value == {"Companies": ["Acme"]}
        assert result.message == "Deleted [Companies] object of the name [Acme]."
        assert linked_store.read_file(container_path("Interactions")).sha == before
        assert companies.last_operation.containers == ("Companies",)

    def test_interaction_delete_removes_content_and_links(self, linked_store, make_repo) -> None:
        interactions = make_repo("Interactions")

        result = interactions.delete_obj("review")

        assert result.value == {"Interactions": ["Review"]}
        beta = _objects(linked_store, "Companies")[1]
        assert beta["linked_interactions"] == _link("Call")
        names = [e.name for e in linked_store.list_directory("Interactions")]
        assert "review.pdf" not in names

    def test_missing_content_file_is_ignored(self, store, make_repo) -> None:
        _seed(store, "Interactions", [{"name": "Call", "url": "Interactions/gone.pdf"}])

        result = make_repo("Interactions").delete_obj("Call")

        assert result.ok
        assert _objects(store, "Interactions") == []

    def test_study_delete_scrubs_both_link_maps(self, store, make_repo) -> None:
        _seed(store, "Studies", [{"name": "Pricing"}])
        _seed(store, "Companies", [{"name": "Acme", "linked_studies": _link("Pricing", "Churn")}])
        _seed(store, "Interactions", [{"name": "Call", "linked_studies": _link("Pricing")}])

        result = make_repo("Studies").delete_obj("Pricing")

        assert result.ok
        assert _objects(store, "Studies") == []
        assert _objects(store, "Companies")[0]["linked_studies"] == _link("Churn")
        assert _objects(store, "Interactions")[0]["linked_studies"] == {}

    def test_delete_missing_object(self, linked_store, companies) -> None:
        head = linked_store.read_file(container_path("Companies")).sha

        result = companies.delete_obj("Gamma")

        assert result.kind is ErrorKind.NOT_FOUND
        assert linked_store.read_file(container_path("Companies")).sha == head
        assert _locks(linked_store) == []


class TestWriteConflicts:
    """Tests for CAS conflict recovery and partial writes."""

    def test_conflict_rereads_and_merges_again(self, store, make_repo) -> None:
        """Test that an interleaved write is preserved and ours applied."""
        _seed(store, "Companies", [{"name": "Acme"}])
        repo = make_repo("Companies", SneakyWriter(store, times=1))

        result = repo.create_obj([{"name": "Beta"}])

        assert result.ok
        names = [o["name"] for o in _objects(store, "Companies")]
        assert names == ["Acme", "Sneaky 1", "Beta"]
        op = repo.last_operation
        assert op.attempts == 2
        assert op.history == [
            S.IDLE, S.LOCKING, S.LOCKED, S.READING, S.MERGING, S.WRITING,
            S.WRITE_CONFLICT, S.READING, S.MERGING, S.WRITING, S.WRITE_OK,
            S.RELEASING, S.IDLE,
        ]

    def test_conflicts_exhaust_attempts(self, store, make_repo) -> None:
        """Test that persistent conflicts return WRITE_CONFLICT and release."""
        repo = make_repo("Companies", SneakyWriter(store, times=10))

        result = repo.create_obj([{"name": "Beta"}])

        assert result.kind is ErrorKind.WRITE_CONFLICT
        assert result.status.code == 409
        assert repo.last_operation.attempts == 3
        assert "Beta" not in [o["name"] for o in _objects(store, "Companies")]
        assert _locks(store) == []

    def test_partial_write_reports_orphan_risk(self, linked_store, make_repo) -> None:
        """Test that a failure after the first container is written is ORPHAN_RISK."""
        repo = make_repo("Companies", RefusingWriter(linked_store, refuse="Interactions"))

        result = repo.delete_obj("Acme")

        assert result.kind is ErrorKind.ORPHAN_RISK
        assert result.status.code == 500
        assert result.details["written"] == ["Companies"]
        assert result.details["unwritten"] == ["Interactions"]
        assert result.details["unremoved"] == {"Interactions": ["Call"]}
        assert result.details["cause"] == "PERMISSION_DENIED"
        assert "Call" in [i["name"] for i in _objects(linked_store, "Interactions")]
        assert _locks(linked_store) == []

    def test_failure_before_any_write_is_returned_as_is(self, linked_store, make_repo) -> None:
        repo = make_repo("Companies", RefusingWriter(linked_store, refuse="Companies"))

        result = repo.delete_obj("Acme")

        assert result.kind is ErrorKind.PERMISSION_DENIED

    def test_content_file_failure_is_orphan_risk(self, clock, no_wait_retry) -> None:
        store = PdfProtectingStore(clock=clock)
        _seed(store, "Interactions", [{"name": "Call", "url": "Interactions/call.pdf"}])
        store.write_file("Interactions/call.pdf", b"%PDF", "upload", "main")
        catcher = ContainerCatcher(
            ContainerLockManager(store, "mrcli-test", clock=clock), ObjectWriter(store)
        )
        repo = ContainerRepository(get_policy("Interactions"), catcher, retry=no_wait_retry, clock=clock)

        result = repo.delete_obj("Call", allow_orphans=True)

        assert result.kind is ErrorKind.ORPHAN_RISK
        assert list(result.details["unremoved_files"]) == ["Interactions/call.pdf"]
        assert _objects(store, "Interactions") == []

    def test_release_failure_is_reported(self, store, make_repo) -> None:
        """Test that a lock that cannot be removed turns success into RELEASE_FAILURE."""
        repo = make_repo("Companies", LockStealingWriter(store))

        result = repo.create_obj([{"name": "Acme"}])

        assert result.kind is ErrorKind.RELEASE_FAILURE
        assert result.details["result"] == ["Acme"]
        assert [o["name"] for o in _objects(store, "Companies")] == ["Acme"]
