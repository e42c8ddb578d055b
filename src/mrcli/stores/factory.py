"""Factory functions for creating object store backends.

Backends are looked up by name in a registry. The built-in backends are
registered lazily on first use; new backends can be registered at runtime.
"""

from __future__ import annotations

from typing import Any, Callable

from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.base import StoreError

# Type for backend constructor functions
BackendConstructor = Callable[..., ObjectStoreBackend]

# Registry of backend constructors
_backend_registry: dict[str, BackendConstructor] = {}

_ALIASES = {"gh": "github", "fs": "filesystem", "local": "filesystem", "mem": "memory"}


def register_backend(name: str) -> Callable[[BackendConstructor], BackendConstructor]:
    """Decorator to register an object store backend.

    Example:
        >>> @register_backend("gitlab")
        ... class GitLabObjectStore:
        ...     name = "gitlab"
    """

    def decorator(cls: BackendConstructor) -> BackendConstructor:
        _backend_registry[name] = cls
        return cls

    return decorator


def _build_github(**kwargs: Any) -> ObjectStoreBackend:
    from mrcli.stores.backends.github import GitHubConfig, GitHubObjectStore

    retry = kwargs.pop("retry", None)
    urlopen = kwargs.pop("urlopen", None)
    if "org" not in kwargs or "token" not in kwargs:
        raise StoreError("GitHub backend requires 'org' and 'token'")
    options: dict[str, Any] = {"retry": retry}
    if urlopen is not None:
        options["urlopen"] = urlopen
    return GitHubObjectStore(GitHubConfig(**kwargs), **options)


def create_backend(backend: str, **kwargs: Any) -> ObjectStoreBackend:
    """Create an object store backend by name.

    Args:
        backend: Name of the backend. Options:
            - "github": ``<org>_discovery`` repository via the REST API
            - "filesystem": Local directory (``base_path`` required)
            - "memory": In-memory store (for testing)
        **kwargs: Backend-specific configuration options.

    Returns:
        Configured backend instance.

    Raises:
        StoreError: If the backend is unknown or misconfigured.

    Example:
        >>> store = create_backend("filesystem", base_path="~/.mediumroast/store")
        >>> store = create_backend("github", org="acme", token="ghp_...")
    """
    backend = backend.lower().strip()
    backend = _ALIASES.get(backend, backend)

    if backend in _backend_registry:
        return _backend_registry[backend](**kwargs)

    if backend == "github":
        return _build_github(**kwargs)

    elif backend == "filesystem":
        from mrcli.stores.backends.filesystem import FilesystemObjectStore

        if "base_path" not in kwargs:
            raise StoreError("Filesystem backend requires 'base_path'")
        return FilesystemObjectStore(**kwargs)

    elif backend == "memory":
        from mrcli.stores.backends.memory import MemoryObjectStore

        return MemoryObjectStore(**kwargs)

    available = sorted(set(_backend_registry) | {"github", "filesystem", "memory"})
    raise StoreError(
        f"Unknown store backend: {backend}. Available backends: {', '.join(available)}"
    )


def list_available_backends() -> list[str]:
    """List all backend names accepted by ``create_backend``."""
    return sorted(set(_backend_registry) | {"github", "filesystem", "memory"})
