"""Per-invocation state shared by mrcli commands.

The root callback stores an ``AppContext`` in ``typer.Context.obj``. The
configuration and backend are loaded lazily on first use, so commands like
``setup`` can run before a configuration file exists. Tests pass a
prepared ``AppContext`` (for example one holding a ``MemoryObjectStore``)
as ``obj``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from mrcli.common.resilience import RetryPolicy
from mrcli.config import MrcliConfig, load_config
from mrcli.repository import ContainerRepository, create_catcher, create_repository
from mrcli.stores.backends._protocols import ObjectStoreBackend
from mrcli.stores.concurrency import ContainerCatcher
from mrcli.stores.concurrency.locks import Clock


@dataclass
class AppContext:
    """State of one mrcli invocation.

    Attributes:
        config_file: Path given with ``--conf_file``.
        output: Output format, "table" or "json".
        verbose: Show error details.
        config: Loaded configuration; read from ``config_file`` on demand.
        backend: Object store; built from ``config`` on demand.
        clock: Time source for locks and timestamps.
        retry: Write-conflict retry policy override.
    """

    config_file: Path | None = None
    output: str = "table"
    verbose: bool = False
    config: MrcliConfig | None = None
    backend: ObjectStoreBackend | None = None
    clock: Clock | None = None
    retry: RetryPolicy | None = None

    def get_config(self) -> MrcliConfig:
        if self.config is None:
            self.config = load_config(self.config_file)
        return self.config

    def get_backend(self) -> ObjectStoreBackend:
        if self.backend is None:
            self.backend = self.get_config().create_backend()
        return self.backend

    def catcher(self) -> ContainerCatcher:
        config = self.get_config()
        return create_catcher(
            self.get_backend(),
            process_name=config.process_name,
            stale_after=config.stale_after,
            clock=self.clock,
        )

    def repository(self, container: str) -> ContainerRepository:
        config = self.get_config()
        return create_repository(
            container,
            catcher=self.catcher(),
            write_attempts=config.write_attempts,
            retry=self.retry,
            clock=self.clock,
        )


def get_app_context(ctx: typer.Context) -> AppContext:
    """Return the ``AppContext`` of the running command."""
    app_ctx = ctx.find_object(AppContext)
    if app_ctx is None:
        app_ctx = ctx.ensure_object(AppContext)
    return app_ctx
