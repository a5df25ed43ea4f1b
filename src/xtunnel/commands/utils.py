"""
Utility commands for xtunnel CLI.

Contains init, config, ping, traffic and info commands.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .. import __version__
from ..builder import write_config
from ..core.config import Settings
from ..diagnostics import fetch_traffic_stats
from ..errors import TunnelError
from ..launchers import resolve_binary
from ..paths import get_paths
from ..preferences import TRAFFIC_PORT_KEY, PreferenceStore
from .common import build_service, console, load_settings, print_error, run


def register_util_commands(app: typer.Typer):
    """Register utility commands with the main app."""

    @app.command()
    def init(
        force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing configuration file")] = False,
    ):
        """Create the xtunnel home directory, a default config and port preferences."""
        paths = get_paths()
        paths.ensure_dirs()

        if paths.config_file.exists() and not force:
            if not typer.confirm(f"Configuration file {paths.config_file} already exists. Overwrite?"):
                raise typer.Abort()

        Settings().save_to_yaml(paths.config_file)
        console.print(f"[green]Configuration file created: {paths.config_file}[/green]")

        service = build_service(paths=paths)
        socks_port, traffic_port = service.ensure_ports()

        console.print(Panel(
            f"Home:         [cyan]{paths.root}[/cyan]\n"
            f"SOCKS port:   [cyan]{socks_port}[/cyan]\n"
            f"Traffic port: [cyan]{traffic_port}[/cyan]\n\n"
            "[bold]Next steps:[/bold]\n"
            "  [cyan]xtunnel link set <share-link>[/cyan]\n"
            "  [cyan]xtunnel geo download[/cyan]   [dim](optional, for NonGlobal mode)[/dim]\n"
            "  [cyan]sudo xtunnel up[/cyan]",
            title="xtunnel initialized",
            border_style="green"
        ))

    @app.command()
    def config(
        output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write to a file instead of printing")] = None,
    ):
        """Show the runtime configuration a start would use."""
        service = build_service()
        try:
            document = service.orchestrator.preview_config()
            blob = service.builder.serialize(document)
            if output is not None:
                write_config(output, blob)
        except TunnelError as e:
            print_error(e)
            raise typer.Exit(1)

        if output is not None:
            console.print(f"[green]Configuration written to {output}[/green]")
        else:
            console.print(Syntax(blob.decode("utf-8"), "json", word_wrap=True))

    @app.command()
    def ping(
        share_link: Annotated[Optional[str], typer.Argument(help="Link to probe; defaults to the stored one")] = None,
    ):
        """Measure latency through a share link with a temporary proxy core."""
        service = build_service()
        with console.status("Probing..."):
            latency = run(service.ping(share_link))
        console.print(f"[green]{latency} ms[/green]")

    @app.command()
    def traffic():
        """Show SOCKS uplink/downlink byte counters of the running tunnel."""
        paths = get_paths()
        port = PreferenceStore(paths.preferences_file).get(TRAFFIC_PORT_KEY)
        if not isinstance(port, int):
            console.print("[yellow]No traffic port stored. Run: xtunnel ports[/yellow]")
            raise typer.Exit(1)

        stats = asyncio.run(fetch_traffic_stats(port))
        if stats is None:
            console.print("[yellow]Traffic counters unavailable (is the tunnel running?)[/yellow]")
            raise typer.Exit(1)

        table = Table(title="SOCKS traffic")
        table.add_column("Direction", style="cyan")
        table.add_column("Bytes", justify="right")
        table.add_row("Downlink", f"{stats.downlink:,}")
        table.add_row("Uplink", f"{stats.uplink:,}")
        console.print(table)

    @app.command("version")
    def version_info():
        """Show versions, binaries and paths."""
        settings = load_settings()
        paths = get_paths()
        service = build_service(settings, paths)

        table = Table(title="xtunnel")
        table.add_column("Item", style="cyan")
        table.add_column("Value")
        table.add_row("xtunnel", __version__)
        table.add_row("Proxy core", service.core_version() or "[red]not found[/red]")
        table.add_row("Core binary", resolve_binary(settings.core.binary) or f"[red]{settings.core.binary} not found[/red]")
        table.add_row(
            "Translator binary",
            resolve_binary(settings.tun2socks.binary) or f"[red]{settings.tun2socks.binary} not found[/red]",
        )
        table.add_row("Home", str(paths.root))
        table.add_row("Geo assets", "present" if service.geo_assets.present() else "[yellow]missing[/yellow]")
        console.print(table)

        for problem in settings.validate_all():
            console.print(f"[yellow]Config warning: {problem}[/yellow]")
