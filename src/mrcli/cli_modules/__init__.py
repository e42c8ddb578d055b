"""CLI modules for mrcli.

    - common: Shared infrastructure (context, output, errors)
    - objects: ``company``, ``interaction`` and ``study`` commands
    - setup: ``setup`` command
    - locks: ``locks`` command
    - account: ``user``, ``billing`` and ``storage`` commands

Usage:
    from mrcli.cli_modules import register_all

    app = typer.Typer()
    register_all(app)
"""

import typer

from mrcli.cli_modules import account, locks, objects, setup


def register_all(app: typer.Typer) -> None:
    """Register every mrcli command with ``app``."""
    setup.register_commands(app)
    objects.register_commands(app)
    locks.register_commands(app)
    account.register_commands(app)


__all__ = ["register_all", "account", "locks", "objects", "setup"]
