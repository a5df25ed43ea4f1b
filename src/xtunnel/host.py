"""
Host-side tunnel state.

The host accessor is the single source of truth for a tunnel's status.
``LocalHostTunnel`` runs the packet tunnel provider inside this process and
publishes every status change to subscribers and to a registry on disk, so
other xtunnel processes on the same host can see which tunnels are active.
"""

import asyncio
import inspect
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Union

from .core.logging import get_logger
from .errors import TunnelError
from .models.tunnel import SessionSummary, TunnelStartOptions, TunnelStatus
from .provider import PacketTunnelProvider


logger = get_logger(__name__)

StatusCallback = Callable[[TunnelStatus], Union[Awaitable[None], None]]


def pid_alive(pid: Optional[int]) -> bool:
    if not pid or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class TunnelRegistry:
    """
    One JSON record per managed tunnel under ``<home>/tunnels``.

    A record only counts as active while the process that wrote it is
    alive, so crashed processes never block new tunnels.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def _record_path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def write(self, name: str, status: TunnelStatus, pid: Optional[int] = None) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        record = {
            "name": name,
            "status": status.value,
            "pid": pid if pid is not None else os.getpid(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        path = self._record_path(name)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record, indent=2))
        os.replace(tmp, path)

    def remove(self, name: str) -> None:
        self._record_path(name).unlink(missing_ok=True)

    def list_sessions(self) -> list[SessionSummary]:
        if not self.directory.is_dir():
            return []

        sessions = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                sessions.append(SessionSummary.model_validate(json.loads(path.read_text())))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable tunnel record", path=str(path), error=str(e))
        return sessions

    def list_other_active_sessions(self, own_name: str) -> list[SessionSummary]:
        return [
            s for s in self.list_sessions()
            if s.name != own_name and s.status.is_active and pid_alive(s.pid)
        ]


class HostTunnel(Protocol):
    """What the orchestrator needs from the host."""

    @property
    def status(self) -> TunnelStatus: ...

    @property
    def connected_at(self) -> Optional[datetime]: ...

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]: ...

    async def register(self) -> None: ...

    async def start_tunnel(self, options: TunnelStartOptions) -> None: ...

    async def stop_tunnel(self) -> None: ...

    async def reassert(self) -> None: ...

    def list_other_active_sessions(self) -> list[SessionSummary]: ...


class LocalHostTunnel:
    """In-process host for a single tunnel."""

    def __init__(
        self,
        provider: PacketTunnelProvider,
        registry: TunnelRegistry,
        name: str = "default",
    ):
        self.provider = provider
        self.registry = registry
        self.name = name
        self._status = TunnelStatus.DISCONNECTED
        self._connected_at: Optional[datetime] = None
        self._subscribers: list[StatusCallback] = []
        self._start_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> TunnelStatus:
        return self._status

    @property
    def connected_at(self) -> Optional[datetime]:
        return self._connected_at

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register for status changes; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _set_status(self, status: TunnelStatus) -> None:
        if status == self._status:
            return
        previous, self._status = self._status, status
        if status == TunnelStatus.CONNECTED:
            if previous != TunnelStatus.REASSERTING:
                self._connected_at = datetime.now(timezone.utc)
        elif status != TunnelStatus.REASSERTING:
            self._connected_at = None

        logger.debug("Tunnel status changed", tunnel=self.name, previous=previous.value, status=status.value)

        if status != TunnelStatus.INVALID:
            try:
                self.registry.write(self.name, status)
            except OSError as e:
                logger.warning("Could not update tunnel registry", error=str(e))

        for callback in list(self._subscribers):
            try:
                result = callback(status)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Status subscriber failed", error=str(e))

    async def register(self) -> None:
        """
        Persist this tunnel's registration with the host.

        A registration that cannot be written leaves the tunnel Invalid.
        """
        try:
            self.registry.write(self.name, self._status)
        except OSError as e:
            await self._set_status(TunnelStatus.INVALID)
            raise TunnelError(f"Could not register tunnel '{self.name}': {e}") from e

        if self._status == TunnelStatus.INVALID:
            await self._set_status(TunnelStatus.DISCONNECTED)

    async def invalidate(self) -> None:
        await self._set_status(TunnelStatus.INVALID)

    async def start_tunnel(self, options: TunnelStartOptions) -> None:
        """
        Start the provider; returns once the tunnel is Connected.

        Raises:
            TunnelError: tunnel not Disconnected, or start aborted by a stop
        """
        if self._status != TunnelStatus.DISCONNECTED:
            raise TunnelError(f"Cannot start tunnel while {self._status.value}")

        await self._set_status(TunnelStatus.CONNECTING)
        self._start_task = asyncio.create_task(self.provider.start_tunnel(options))
        try:
            await asyncio.wait({self._start_task})
        except asyncio.CancelledError:
            self._start_task.cancel()
            raise

        task, self._start_task = self._start_task, None
        error = None if task.cancelled() else task.exception()
        if task.cancelled() or self._status == TunnelStatus.DISCONNECTING:
            # A stop arrived while starting; its teardown owns the final state.
            raise TunnelError("Tunnel start aborted by stop request") from error

        if error is not None:
            await self._set_status(TunnelStatus.DISCONNECTED)
            raise error

        await self._set_status(TunnelStatus.CONNECTED)

    async def stop_tunnel(self) -> None:
        """
        Request teardown.

        Returns once the tunnel is Disconnecting; teardown completes in the
        background and ends in Disconnected.
        """
        if self._status in (TunnelStatus.DISCONNECTED, TunnelStatus.INVALID, TunnelStatus.DISCONNECTING):
            return

        if self._start_task is not None and not self._start_task.done():
            logger.info("Aborting tunnel start", tunnel=self.name)
            self._start_task.cancel()

        await self._set_status(TunnelStatus.DISCONNECTING)
        self._stop_task = asyncio.create_task(self._teardown())

    async def _teardown(self) -> None:
        try:
            if self._start_task is not None:
                await asyncio.wait({self._start_task})
            await self.provider.stop_tunnel()
        finally:
            await self._set_status(TunnelStatus.DISCONNECTED)

    async def wait_stopped(self) -> None:
        if self._stop_task is not None:
            await self._stop_task
            self._stop_task = None

    async def reassert(self) -> None:
        """Re-apply interface settings on a connected tunnel."""
        if self._status != TunnelStatus.CONNECTED:
            raise TunnelError(f"Cannot reassert tunnel while {self._status.value}")

        await self._set_status(TunnelStatus.REASSERTING)
        try:
            await self.provider.reassert()
        except TunnelError as e:
            logger.error("Reassert failed, stopping tunnel", error=str(e))
            await self._set_status(TunnelStatus.CONNECTED)
            await self.stop_tunnel()
            raise
        await self._set_status(TunnelStatus.CONNECTED)

    def list_other_active_sessions(self) -> list[SessionSummary]:
        return self.registry.list_other_active_sessions(self.name)
