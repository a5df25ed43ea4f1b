"""
Geo-data commands for xtunnel CLI.

Contains the geo subcommands: download, clear, list.
"""

import typer
from rich.table import Table

from ..geo_assets import GeoAssetStore
from ..paths import get_paths
from .common import console, control_client, load_settings, run, try_remote


def register_geo_commands(app: typer.Typer):
    """Register geo subcommands with the app."""

    geo_app = typer.Typer(
        help="Manage geoip/geosite assets used by NonGlobal routing.",
        invoke_without_command=True,
        no_args_is_help=True,
    )
    app.add_typer(geo_app, name="geo")

    def _store(settings=None) -> GeoAssetStore:
        settings = settings or load_settings()
        return GeoAssetStore(get_paths().assets_dir, settings.geo)

    @geo_app.command("download")
    def geo_download():
        """Download geoip.dat and geosite.dat."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).refresh_geo_assets()))
        if data is not None:
            console.print(f"[green]{data['message']}[/green]")
            if (data.get("data") or {}).get("restarted"):
                console.print("[dim]Tunnel restarted to use the new rules.[/dim]")
            return

        store = _store(settings)
        with console.status("Downloading geo assets..."):
            saved = run(store.download())
        for path in saved:
            console.print(f"[green]Saved {path.name}[/green] ({path.stat().st_size:,} bytes)")

    @geo_app.command("clear")
    def geo_clear():
        """Remove downloaded geo assets."""
        settings = load_settings()
        data = run(try_remote(control_client(settings).clear_geo_assets()))
        if data is not None:
            console.print(f"[green]{data['message']}[/green]")
            return

        removed = _store(settings).clear()
        console.print(f"[green]Removed {removed} file(s)[/green]")

    @geo_app.command("list")
    def geo_list():
        """List downloaded geo assets."""
        files = _store().list_files()
        if not files:
            console.print("[yellow]No geo assets. NonGlobal mode will only route by built-in lists.[/yellow]")
            console.print("[dim]Download them with: xtunnel geo download[/dim]")
            return

        table = Table(title="Geo assets")
        table.add_column("File", style="cyan")
        table.add_column("Size", justify="right")
        for path in files:
            table.add_row(path.name, f"{path.stat().st_size:,}")
        console.print(table)
