"""Tests for repository wiring and container policies."""

from __future__ import annotations

from datetime import timedelta

import pytest

from mrcli.repository import (
    COMPANIES,
    CONTAINERS,
    INTERACTIONS,
    STUDIES,
    create_catcher,
    create_containers,
    create_repository,
    get_policy,
)
from mrcli.result import ErrorKind
from mrcli.stores.backends import MemoryObjectStore
from mrcli.stores.concurrency import ContainerLockManager
from mrcli.stores.concurrency.writer import container_path


class TestPolicies:
    def test_get_policy_is_case_insensitive(self) -> None:
        assert get_policy("companies") is COMPANIES
        assert get_policy("INTERACTIONS") is INTERACTIONS
        with pytest.raises(KeyError, match="Unknown container: widgets"):
            get_policy("widgets")

    def test_delete_containers(self) -> None:
        """Test which containers each delete has to catch."""
        assert COMPANIES.delete_containers() == ("Companies", "Interactions")
        assert INTERACTIONS.delete_containers() == ("Interactions", "Companies")
        assert STUDIES.delete_containers() == ("Studies", "Companies", "Interactions")
        assert STUDIES.delete_containers(allow_orphans=True) == ("Studies",)

    def test_link_fields(self) -> None:
        assert COMPANIES.link_field == "linked_companies"
        assert STUDIES.link_field == "linked_studies"
        assert INTERACTIONS.content_field == "url"


class TestCreateRepository:
    def test_repository_over_backend(self, clock) -> None:
        """Test that a repository built from a backend can write and read."""
        store = MemoryObjectStore(clock=clock)
        studies = create_repository("studies", store, process_name="mrcli-study", clock=clock)

        assert studies.name == "Studies"
        assert studies.create_obj([{"name": "Pricing"}]).ok
        assert studies.find_by_name("pricing").ok

    def test_requires_backend_or_catcher(self) -> None:
        with pytest.raises(ValueError):
            create_repository("Companies")

    def test_shared_catcher(self, catcher, no_wait_retry) -> None:
        repo = create_repository("Interactions", catcher=catcher, retry=no_wait_retry)

        assert repo.create_obj([{"name": "Call"}]).value == ["Call"]

    def test_catcher_uses_process_name_and_stale_policy(self, store, clock) -> None:
        """Test that lock files are named after the process and age out."""
        ContainerLockManager(store, "mrcli-old", clock=clock).lock_container("Companies")
        clock.advance(minutes=6)

        patient = create_catcher(store, "mrcli-a", stale_after=timedelta(minutes=10), clock=clock)
        eager = create_catcher(store, "mrcli-b", stale_after=timedelta(minutes=5), clock=clock)

        assert patient.lock_manager.lock_container("Companies").kind is ErrorKind.LOCK_CONTENTION
        handle = eager.lock_manager.lock_container("Companies").value
        assert handle.path == "Companies/mrcli-b.lock"

    def test_catcher_without_stale_breaking(self, store, clock) -> None:
        catcher = create_catcher(store, stale_after=None, clock=clock)

        assert catcher.lock_manager.stale_policy.break_stale is False


class TestCreateContainers:
    def test_creates_all_containers(self, store) -> None:
        result = create_containers(store)

        assert result.ok
        assert result.message == "Created [3] of [3] containers."
        for name in CONTAINERS:
            assert store.read_file(container_path(name)).content == b"[]"

    def test_existing_containers_are_kept(self, store) -> None:
        """Test that running setup twice changes nothing."""
        store.write_file(container_path("Studies"), b'[{"name": "Pricing"}]', "seed", "main")

        result = create_containers(store)

        assert result.value["Studies"] is None
        assert result.message == "Created [2] of [3] containers."
        assert store.read_file(container_path("Studies")).content == b'[{"name": "Pricing"}]'
        assert create_containers(store).message == "Created [0] of [3] containers."
