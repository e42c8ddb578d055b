"""Object store backends: GitHub, local filesystem and in-memory."""

from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.backends.filesystem import FilesystemObjectStore
from mrcli.stores.backends.github import GitHubConfig, GitHubObjectStore
from mrcli.stores.backends.memory import MemoryObjectStore

__all__ = [
    "ObjectStoreBackend",
    "FilesystemObjectStore",
    "GitHubConfig",
    "GitHubObjectStore",
    "MemoryObjectStore",
]
