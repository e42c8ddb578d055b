"""Locks command - inspect and recover container locks.

A process that dies while holding a container leaves its lock file behind.
``mrcli locks`` shows who holds each container; ``--break-stale`` removes
locks older than the configured ``stale_lock_minutes``.

Examples:
    mrcli locks
    mrcli locks --container Companies
    mrcli locks --break-stale
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

import typer

from mrcli.cli_modules.common.context import get_app_context
from mrcli.cli_modules.common.errors import EXIT_FAILURE, InputError, error_boundary
from mrcli.cli_modules.common.output import ConsoleOutput, JsonOutput
from mrcli.repository import CONTAINERS, get_policy


@error_boundary
def locks_cmd(
    ctx: typer.Context,
    container: Annotated[
        Optional[str],
        typer.Option("--container", help="Only inspect this container"),
    ] = None,
    break_stale: Annotated[
        bool,
        typer.Option("--break-stale", help="Remove locks older than stale_lock_minutes"),
    ] = False,
) -> None:
    """Show lock holders per container and optionally break stale locks."""
    app_ctx = get_app_context(ctx)
    if container is not None:
        try:
            names: tuple[str, ...] = (get_policy(container).name,)
        except KeyError as e:
            raise InputError(str(e.args[0]), "--container") from e
    else:
        names = CONTAINERS

    manager = app_ctx.catcher().lock_manager
    rows: list[dict[str, Any]] = []
    errors: list[str] = []
    broken: list[str] = []
    for name in names:
        status = manager.check_for_lock(name)
        if not status.ok:
            errors.append(status.message)
            continue
        for holder in status.value.holders:
            rows.append({"container": name, **holder.to_dict()})
            if break_stale and holder.stale:
                result = manager.break_lock(holder)
                if result.ok:
                    broken.append(holder.path)
                else:
                    errors.append(result.message)

    if app_ctx.output == "json":
        JsonOutput().write_data({"locks": rows, "broken": broken, "errors": errors})
    else:
        out = ConsoleOutput(verbose=app_ctx.verbose)
        if rows:
            out.table(
                "Container locks",
                ["Container", "Lock File", "Owner", "Host", "Acquired At", "Stale"],
                [
                    [r["container"], r["path"], r["owner"], r["host"], r["acquired_at"], r["stale"]]
                    for r in rows
                ],
            )
        for path in broken:
            out.warning(f"Broke stale lock [{path}]")
        for message in errors:
            out.error(message)
        if not errors:
            out.success(f"Inspected [{len(names)}] container(s), found [{len(rows)}] lock(s).")

    if errors:
        raise typer.Exit(EXIT_FAILURE)


def register_commands(app: typer.Typer) -> None:
    app.command(name="locks")(locks_cmd)
