"""
Tunnel commands for xtunnel CLI.

Contains up, status, stop, restart and reassert. ``up`` runs the tunnel
in the foreground and serves the control API; the other commands talk to
that process.
"""

import asyncio
import signal
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from ..api.app import serve_api
from ..core.config import Settings
from ..errors import TunnelError
from ..models.tunnel import TunnelStatus
from ..paths import get_paths
from ..preferences import SOCKS_PORT_KEY, TRAFFIC_PORT_KEY, PreferenceStore
from ..host import TunnelRegistry
from .common import build_service, console, control_client, load_settings, print_error, run, try_remote


def register_tunnel_commands(app: typer.Typer):
    """Register tunnel lifecycle commands with the main app."""

    @app.command()
    def up(
        host: Annotated[Optional[str], typer.Option("--host", "-h", help="Control API host")] = None,
        port: Annotated[Optional[int], typer.Option("--port", "-p", help="Control API port")] = None,
        api: Annotated[bool, typer.Option("--api/--no-api", help="Serve the control API")] = True,
        verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    ):
        """Start the tunnel and keep it running until interrupted.

        Needs root (or CAP_NET_ADMIN) to configure the tun interface.
        """
        settings = load_settings(verbose)
        if host is not None:
            settings.api.host = host
        if port is not None:
            settings.api.port = port

        try:
            asyncio.run(_up(settings, api))
        except TunnelError as e:
            print_error(e)
            raise typer.Exit(1)

    @app.command()
    def status():
        """Show tunnel status, ports and mode."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).status()))
        if data is None:
            _show_local_status()
            return

        table = Table(title=f"Tunnel {data['name']}")
        table.add_column("Property", style="cyan")
        table.add_column("Value")
        table.add_row("Status", _status_markup(data["status"]))
        table.add_row("Connected at", data.get("connected_at") or "-")
        table.add_row("Mode", data["mode"])
        table.add_row("SOCKS port", str(data.get("socks_port") or "-"))
        table.add_row("Traffic port", str(data.get("traffic_port") or "-"))
        table.add_row("Share link", "[green]set[/green]" if data.get("share_link_set") else "[red]not set[/red]")
        console.print(table)

        for other in data.get("other_sessions") or []:
            console.print(f"[yellow]Other active tunnel: {other['name']} ({other['status']})[/yellow]")

    @app.command()
    def stop():
        """Stop the running tunnel."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).stop()))
        if data is None:
            console.print("[yellow]No running xtunnel process found[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]{data['message']}[/green]")

    @app.command()
    def restart():
        """Restart the running tunnel with the stored preferences."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).restart()))
        if data is None:
            console.print("[yellow]No running xtunnel process found. Start one with: xtunnel up[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]{data['message']}[/green]")

    @app.command()
    def reassert():
        """Re-apply interface addresses, routes and DNS."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).reassert()))
        if data is None:
            console.print("[yellow]No running xtunnel process found[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]{data['message']}[/green]")


def _status_markup(value: str) -> str:
    color = {
        TunnelStatus.CONNECTED.value: "green",
        TunnelStatus.CONNECTING.value: "yellow",
        TunnelStatus.REASSERTING.value: "yellow",
        TunnelStatus.DISCONNECTING.value: "yellow",
        TunnelStatus.INVALID.value: "red",
    }.get(value, "dim")
    return f"[{color}]{value}[/{color}]"


def _show_local_status() -> None:
    """Status from on-disk state when no ``xtunnel up`` process answers."""
    paths = get_paths()
    preferences = PreferenceStore(paths.preferences_file)
    sessions = TunnelRegistry(paths.tunnels_dir).list_sessions()

    console.print("[dim]Control API not reachable, showing stored state.[/dim]")
    table = Table(title="Stored preferences")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Mode", preferences.mode.value)
    table.add_row("SOCKS port", str(preferences.get(SOCKS_PORT_KEY, "-")))
    table.add_row("Traffic port", str(preferences.get(TRAFFIC_PORT_KEY, "-")))
    table.add_row("Share link", "[green]set[/green]" if preferences.share_link else "[red]not set[/red]")
    console.print(table)

    if sessions:
        sessions_table = Table(title="Registered tunnels")
        sessions_table.add_column("Name", style="cyan")
        sessions_table.add_column("Status")
        sessions_table.add_column("PID")
        for session in sessions:
            sessions_table.add_row(session.name, _status_markup(session.status.value), str(session.pid or "-"))
        console.print(sessions_table)


async def _up(settings: Settings, serve_control_api: bool) -> None:
    """Async implementation of the up command."""
    service = build_service(settings)
    socks_port, traffic_port = service.ensure_ports()

    shutdown_event = asyncio.Event()

    def signal_handler():
        console.print("\n[yellow]Shutting down...[/yellow]")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    api_task: Optional[asyncio.Task] = None
    try:
        await service.orchestrator.start()

        if serve_control_api:
            api_task = asyncio.create_task(serve_api(service, settings.api.host, settings.api.port))

        api_line = (
            f"Control API: [cyan]http://{settings.api.host}:{settings.api.port}/api[/cyan]\n"
            if serve_control_api else ""
        )
        console.print(Panel(
            f"[bold green]Tunnel Connected[/bold green]\n"
            f"Interface:  [cyan]{settings.interface.name}[/cyan]\n"
            f"Mode:       [cyan]{service.preferences.mode.value}[/cyan]\n"
            f"SOCKS:      [cyan]{settings.core.socks_listen}:{socks_port}[/cyan]\n"
            f"Metrics:    [cyan]127.0.0.1:{traffic_port}[/cyan]\n"
            f"{api_line}\n"
            f"[dim]Press Ctrl+C to stop.[/dim]",
            title="xtunnel",
            border_style="green"
        ))

        waiters = [asyncio.create_task(shutdown_event.wait())]
        if api_task is not None:
            # uvicorn returns once it handled a signal itself
            waiters.append(api_task)
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        if waiters[0] in pending:
            waiters[0].cancel()

    finally:
        if api_task is not None:
            api_task.cancel()
            await asyncio.gather(api_task, return_exceptions=True)
        await service.shutdown()
        console.print("[green]Tunnel stopped[/green]")
