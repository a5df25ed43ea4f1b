"""
Tunnel lifecycle orchestration.

State machine (owned by the host, observed here)::

    Disconnected -> Connecting -> Connected -> Disconnecting -> Disconnected
                                  Connected <-> Reasserting
    Invalid (until reprovisioned)

Start, restart, reassert, reprovision and the mode/asset changes that
trigger a restart are serialized by one lock. A stop request is issued
immediately so it can abort a start that is still in progress.
"""

import asyncio
from typing import Optional, Union

from .builder import ConfigurationBuilder, write_config
from .core.config import LifecycleSettings
from .core.logging import get_logger
from .errors import ConflictError, TunnelError
from .geo_assets import GeoAssetStore
from .host import HostTunnel, StatusCallback
from .models.tunnel import TunnelSession, TunnelStartOptions, TunnelStatus, VPNMode
from .models.xray import RuntimeConfiguration
from .paths import XTunnelPaths
from .preferences import PreferenceStore


logger = get_logger(__name__)

ACTIVE_STATES = (TunnelStatus.CONNECTING, TunnelStatus.CONNECTED, TunnelStatus.REASSERTING)
WAIT_STATES = (TunnelStatus.DISCONNECTING, TunnelStatus.CONNECTED)


class ConflictGuard:
    """Refuses to start while another managed tunnel is active on the host."""

    def __init__(self, host: HostTunnel):
        self.host = host

    def check(self) -> None:
        sessions = self.host.list_other_active_sessions()
        if sessions:
            logger.warning(
                "Refusing to start, other tunnels active",
                sessions=[s.name for s in sessions],
            )
            raise ConflictError(sessions)


class TunnelOrchestrator:
    """Drives one tunnel through start, stop and restart."""

    def __init__(
        self,
        host: HostTunnel,
        preferences: PreferenceStore,
        builder: ConfigurationBuilder,
        paths: XTunnelPaths,
        lifecycle: Optional[LifecycleSettings] = None,
        geo_assets: Optional[GeoAssetStore] = None,
        guard: Optional[ConflictGuard] = None,
    ):
        self.host = host
        self.preferences = preferences
        self.builder = builder
        self.paths = paths
        self.lifecycle = lifecycle or LifecycleSettings()
        self.geo_assets = geo_assets
        self.guard = guard or ConflictGuard(host)
        self._lock = asyncio.Lock()
        self._listeners: list[StatusCallback] = []
        self._unsubscribe = host.subscribe(self._on_status)

    @property
    def status(self) -> TunnelStatus:
        return self.host.status

    def session(self) -> TunnelSession:
        return TunnelSession(
            name=self.lifecycle.tunnel_name,
            status=self.host.status,
            connected_at=self.host.connected_at,
        )

    def add_listener(self, callback: StatusCallback) -> None:
        self._listeners.append(callback)

    async def _on_status(self, status: TunnelStatus) -> None:
        logger.info("Tunnel status", status=status.value)
        for callback in list(self._listeners):
            result = callback(status)
            if asyncio.iscoroutine(result):
                await result

    def close(self) -> None:
        self._unsubscribe()

    def preview_config(self) -> RuntimeConfiguration:
        """Build the configuration a start would use, without side effects."""
        return self.builder.build_from_preferences(self.preferences.load_tunnel_preferences())

    async def start(self) -> None:
        """
        Start the tunnel.

        A tunnel that is already connecting or connected is left alone.

        Raises:
            ConflictError: another managed tunnel is active
            ConfigError: preferences incomplete or configuration unbuildable
            TunnelError: tunnel is disconnecting or invalid, or launch failed
        """
        async with self._lock:
            await self._start()

    async def _start(self) -> None:
        status = self.host.status
        if status in ACTIVE_STATES:
            logger.info("Tunnel already active, start ignored", status=status.value)
            return
        if status != TunnelStatus.DISCONNECTED:
            raise TunnelError(f"Cannot start tunnel while {status.value}")

        self.guard.check()
        await self.host.register()

        preferences = self.preferences.load_tunnel_preferences()
        config = self.builder.build_from_preferences(preferences)
        config_path = write_config(self.paths.runtime_config_file, self.builder.serialize(config))

        logger.info("Starting tunnel", mode=preferences.mode.value, socks_port=preferences.socks_port)
        await self.host.start_tunnel(
            TunnelStartOptions(socks_port=preferences.socks_port, config_path=config_path)
        )

    async def stop(self) -> None:
        """Request teardown. Failures are logged, never raised."""
        try:
            await self.host.stop_tunnel()
        except Exception as e:
            logger.error("Stop request failed", error=str(e))

    async def restart(self) -> None:
        """Stop, wait for the host to report the tunnel down, then start."""
        async with self._lock:
            await self._restart()

    async def _restart(self) -> None:
        logger.info("Restarting tunnel")
        await self.stop()

        for _ in range(self.lifecycle.restart_max_polls):
            if self.host.status not in WAIT_STATES:
                break
            await asyncio.sleep(self.lifecycle.restart_poll_interval)
        else:
            raise TunnelError(
                f"Tunnel still {self.host.status.value} after "
                f"{self.lifecycle.restart_max_polls} polls, restart abandoned"
            )

        await self._start()

    async def _restart_if_connected(self) -> bool:
        if self.host.status != TunnelStatus.CONNECTED:
            return False
        await self._restart()
        return True

    async def set_mode(self, mode: Union[VPNMode, str]) -> bool:
        """Persist a routing mode; restarts a connected tunnel once."""
        mode = VPNMode.parse(mode)
        async with self._lock:
            self.preferences.set_mode(mode)
            logger.info("VPN mode set", mode=mode.value)
            return await self._restart_if_connected()

    async def set_share_link(self, share_link: str) -> bool:
        """Persist a new share link; restarts a connected tunnel once."""
        async with self._lock:
            self.preferences.set_share_link(share_link)
            return await self._restart_if_connected()

    async def refresh_geo_assets(self) -> bool:
        """Download geo assets; restarts a connected tunnel so rules pick them up."""
        if self.geo_assets is None:
            raise TunnelError("No geo asset store configured")
        async with self._lock:
            await self.geo_assets.download()
            return await self._restart_if_connected()

    async def clear_geo_assets(self) -> bool:
        if self.geo_assets is None:
            raise TunnelError("No geo asset store configured")
        async with self._lock:
            self.geo_assets.clear()
            return await self._restart_if_connected()

    async def reassert(self) -> None:
        """Re-apply network settings after a recoverable network change."""
        async with self._lock:
            await self.host.reassert()

    async def reprovision(self) -> None:
        """Re-register with the host, leaving the Invalid state."""
        async with self._lock:
            await self.host.register()
