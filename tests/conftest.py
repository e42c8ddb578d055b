"""Shared fixtures for mrcli tests."""

from __future__ import annotations

import io
import json
import urllib.error
from datetime import datetime, timedelta, timezone

import pytest

from mrcli.common.resilience import RetryConfig, RetryPolicy
from mrcli.stores.backends import GitHubConfig, GitHubObjectStore, MemoryObjectStore
from mrcli.stores.base import StoreConnectionError
from mrcli.stores.concurrency import ContainerCatcher, ContainerLockManager, ObjectWriter


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryObjectStore:
    return MemoryObjectStore(clock=clock)


@pytest.fixture
def lock_manager(store: MemoryObjectStore, clock: FakeClock) -> ContainerLockManager:
    return ContainerLockManager(store, process_name="mrcli-test", clock=clock)


@pytest.fixture
def writer(store: MemoryObjectStore) -> ObjectWriter:
    return ObjectWriter(store)


@pytest.fixture
def catcher(lock_manager: ContainerLockManager, writer: ObjectWriter) -> ContainerCatcher:
    return ContainerCatcher(lock_manager, writer)


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(RetryConfig.immediate(3))


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeGitHub:
    """Replays queued responses and records every request."""

    def __init__(self) -> None:
        self.queue: list = []
        self.requests: list = []

    def reply(self, data=None, status: int = 200) -> None:
        self.queue.append((status, data))

    def __call__(self, request, timeout=None):
        body = json.loads(request.data) if request.data else None
        self.requests.append((request.get_method(), request.full_url, body, dict(request.header_items())))
        status, data = self.queue.pop(0)
        if isinstance(data, Exception):
            raise data
        payload = json.dumps(data).encode() if data is not None else b""
        if status >= 400:
            raise urllib.error.HTTPError(request.full_url, status, "error", {}, io.BytesIO(payload))
        return FakeResponse(payload)


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def gh_store(github):
    retry = RetryPolicy(
        RetryConfig(
            max_attempts=3,
            base_delay=0.0,
            max_delay=0.0,
            jitter=False,
            retryable_exceptions=(StoreConnectionError,),
        )
    )
    return GitHubObjectStore(GitHubConfig(org="acme", token="secret"), retry=retry, urlopen=github)
