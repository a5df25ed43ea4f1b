"""
Command Line Interface for xtunnel.

Provides commands for running the tunnel, managing the share link,
routing mode and geo assets, and talking to a running tunnel.

Built with Typer for automatic tab completion.
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from . import __version__
from .commands import (
    register_geo_commands,
    register_pref_commands,
    register_tunnel_commands,
    register_util_commands,
)

console = Console()

app = typer.Typer(
    name="xtunnel",
    help="xtunnel - Xray tunnel manager",
    add_completion=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    if value:
        console.print(f"xtunnel version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[bool, typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit.")] = False,
    home: Annotated[Optional[Path], typer.Option("--home", envvar="XTUNNEL_HOME", help="xtunnel home directory")] = None,
):
    """
    xtunnel - Xray tunnel manager

    Routes system traffic through an Xray proxy core built from a share
    link, in Global or NonGlobal (split) mode.
    """
    if home is not None:
        os.environ["XTUNNEL_HOME"] = str(home.expanduser())


register_tunnel_commands(app)
register_pref_commands(app)
register_geo_commands(app)
register_util_commands(app)


# Entry point for the CLI
def cli():
    """Main entry point."""
    app()


if __name__ == "__main__":
    cli()
