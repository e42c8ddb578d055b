"""Object storage for mrcli.

Containers are JSON arrays kept in a version-controlled file store. The
``backends`` package holds the stores themselves, ``concurrency`` the lock
and compare-and-swap protocol built on top of them.
"""

from mrcli.stores.base import (
    FileBlob,
    FileEntry,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
    StoreReadError,
    StoreWriteError,
    WriteReceipt,
    blob_sha,
)
from mrcli.stores.factory import create_backend, list_available_backends, register_backend

__all__ = [
    "FileBlob",
    "FileEntry",
    "WriteReceipt",
    "blob_sha",
    "StoreError",
    "StoreNotFoundError",
    "StoreConflictError",
    "StorePermissionError",
    "StoreConnectionError",
    "StoreReadError",
    "StoreWriteError",
    "create_backend",
    "list_available_backends",
    "register_backend",
]
