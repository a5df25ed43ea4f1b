"""
Helpers shared by the CLI command modules.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

import typer
from rich.console import Console

from ..client import ControlClient
from ..core.config import Settings, get_settings
from ..core.logging import setup_logging
from ..errors import ConflictError, ControlApiError, TunnelError
from ..paths import XTunnelPaths, get_paths
from ..services.tunnel_service import TunnelService

console = Console()

T = TypeVar("T")


def load_settings(verbose: bool = False) -> Settings:
    """Load settings and configure logging for a CLI command."""
    settings = get_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log.level,
        format=settings.log.format,
        log_file=settings.log.file,
    )
    return settings


def build_service(settings: Optional[Settings] = None, paths: Optional[XTunnelPaths] = None) -> TunnelService:
    return TunnelService(settings or load_settings(), paths or get_paths())


def control_client(settings: Settings) -> ControlClient:
    return ControlClient(settings.api.host, settings.api.port)


def print_error(error: TunnelError) -> None:
    console.print(f"[red]Error ({error.code}): {error.message}[/red]")
    if isinstance(error, ConflictError):
        for session in error.sessions:
            console.print(f"  [dim]{session.name}: {session.status.value} (pid {session.pid})[/dim]")


def run(coro: Awaitable[T]) -> T:
    """Run a coroutine; TunnelErrors become a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except TunnelError as e:
        print_error(e)
        raise typer.Exit(1)


async def try_remote(coro: Awaitable[T]) -> Optional[T]:
    """
    Await a control API call.

    Returns None when no ``xtunnel up`` process is listening; errors the
    running process reported are raised.
    """
    try:
        return await coro
    except ControlApiError as e:
        if e.status is None:
            return None
        raise
