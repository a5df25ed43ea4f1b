"""
Preference commands for xtunnel CLI.

Contains the link subcommands (set, show, clear) plus mode and ports.
Changes go through a running ``xtunnel up`` process when there is one,
so a connected tunnel restarts with them; otherwise they are stored for
the next start.
"""

from enum import Enum
from typing import Annotated, Optional

import typer
from rich.table import Table

from ..builder import ConfigurationBuilder
from ..errors import TunnelError
from ..models.tunnel import VPNMode
from ..paths import get_paths
from ..ports import PortAllocator
from ..preferences import SHARE_LINK_KEY, SOCKS_PORT_KEY, TRAFFIC_PORT_KEY, PreferenceStore
from .common import console, control_client, load_settings, print_error, run, try_remote


class ModeChoice(str, Enum):
    global_ = "Global"
    non_global = "NonGlobal"


def _store() -> PreferenceStore:
    paths = get_paths()
    paths.ensure_dirs()
    return PreferenceStore(paths.preferences_file)


def _redact(link: str, keep: int = 16) -> str:
    if len(link) <= keep:
        return link
    return f"{link[:keep]}... ({len(link)} chars)"


def register_pref_commands(app: typer.Typer):
    """Register link, mode and ports commands with the app."""

    link_app = typer.Typer(
        help="Manage the proxy share link.",
        invoke_without_command=True,
        no_args_is_help=True,
    )
    app.add_typer(link_app, name="link")

    @link_app.command("set")
    def link_set(
        share_link: Annotated[Optional[str], typer.Argument(help="Share link (vless://, vmess://, trojan://, ss://)")] = None,
    ):
        """Store a share link; a connected tunnel restarts to use it."""
        if share_link is None:
            share_link = typer.prompt("Share link", hide_input=True)
        share_link = share_link.strip()

        settings = load_settings()
        builder = ConfigurationBuilder(settings=settings.core)
        try:
            count = builder.check_share_link(share_link)
        except TunnelError as e:
            print_error(e)
            raise typer.Exit(1)

        data = run(try_remote(control_client(settings).set_share_link(share_link)))
        if data is None:
            _store().set_share_link(share_link)
            console.print(f"[green]Share link stored ({count} outbound(s))[/green]")
            console.print("[dim]It will be used on the next start.[/dim]")
            return

        restarted = (data.get("data") or {}).get("restarted")
        console.print(f"[green]Share link updated ({count} outbound(s))[/green]")
        if restarted:
            console.print("[dim]Tunnel restarted with the new link.[/dim]")

    @link_app.command("show")
    def link_show(
        reveal: Annotated[bool, typer.Option("--reveal", help="Print the full link")] = False,
    ):
        """Show the stored share link."""
        link = _store().share_link
        if not link:
            console.print("[yellow]No share link stored[/yellow]")
            raise typer.Exit(1)
        console.print(link if reveal else _redact(link))

    @link_app.command("clear")
    def link_clear():
        """Remove the stored share link."""
        if not typer.confirm("Remove the stored share link?"):
            raise typer.Abort()
        if _store().delete(SHARE_LINK_KEY):
            console.print("[green]Share link removed[/green]")
        else:
            console.print("[yellow]No share link stored[/yellow]")

    @app.command()
    def mode(
        value: Annotated[Optional[ModeChoice], typer.Argument(help="Global or NonGlobal; omit to show")] = None,
    ):
        """Show or change the routing mode."""
        if value is None:
            console.print(f"Mode: [cyan]{_store().mode.value}[/cyan]")
            return

        settings = load_settings()
        data = run(try_remote(control_client(settings).set_mode(value.value)))
        if data is None:
            _store().set_mode(VPNMode(value.value))
            console.print(f"[green]Mode set to {value.value}[/green]")
            return

        console.print(f"[green]{data['message']}[/green]")
        if (data.get("data") or {}).get("restarted"):
            console.print("[dim]Tunnel restarted to apply the mode.[/dim]")

    @app.command()
    def ports(
        reallocate: Annotated[bool, typer.Option("--reallocate", "-r", help="Pick two fresh free ports")] = False,
    ):
        """Show the SOCKS and traffic ports, allocating them if unset."""
        store = _store()
        socks_port = store.get(SOCKS_PORT_KEY)
        traffic_port = store.get(TRAFFIC_PORT_KEY)

        if reallocate or socks_port is None or traffic_port is None:
            socks_port, traffic_port = PortAllocator().allocate_and_store(store)
            console.print("[green]Ports allocated[/green]")

        table = Table()
        table.add_column("Port", style="cyan")
        table.add_column("Value")
        table.add_row("SOCKS (socks5Port)", str(socks_port))
        table.add_row("Traffic (trafficPort)", str(traffic_port))
        console.print(table)
        if reallocate:
            console.print("[dim]A running tunnel keeps its ports until restarted.[/dim]")

