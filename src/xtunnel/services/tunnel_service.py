"""
Tunnel service wiring the components together.

This service layer sits between the API/CLI and the tunnel components:
it owns one preference store, one configuration builder and one
orchestrator per home directory.
"""

from typing import Optional

from ..builder import ConfigurationBuilder
from ..core.config import Settings
from ..core.logging import get_logger
from ..diagnostics import LatencyProbe, fetch_traffic_stats
from ..errors import InvalidShareLink
from ..geo_assets import GeoAssetStore
from ..host import HostTunnel, LocalHostTunnel, TunnelRegistry
from ..launchers import XrayCore
from ..models.tunnel import TrafficStats
from ..orchestrator import TunnelOrchestrator
from ..paths import XTunnelPaths
from ..ports import PortAllocator
from ..preferences import SOCKS_PORT_KEY, TRAFFIC_PORT_KEY, PreferenceStore
from ..provider import PacketTunnelProvider
from ..share_link import ShareLinkConverter


logger = get_logger(__name__)


class TunnelService:
    """
    Facade over the tunnel components.

    - Preferences: share link, ports, VPN mode
    - Lifecycle: start, stop, restart, reassert via the orchestrator
    - Diagnostics: traffic counters, latency probe, core version
    """

    def __init__(
        self,
        settings: Settings,
        paths: XTunnelPaths,
        host: Optional[HostTunnel] = None,
        converter: Optional[ShareLinkConverter] = None,
    ):
        self.settings = settings
        self.paths = paths
        paths.ensure_dirs()

        self.preferences = PreferenceStore(paths.preferences_file)
        self.geo_assets = GeoAssetStore(paths.assets_dir, settings.geo)
        self.builder = ConfigurationBuilder(converter, self.geo_assets, settings.core)
        self.registry = TunnelRegistry(paths.tunnels_dir)
        self.ports = PortAllocator()

        self.host = host or LocalHostTunnel(
            PacketTunnelProvider(settings, paths),
            self.registry,
            name=settings.lifecycle.tunnel_name,
        )
        self.orchestrator = TunnelOrchestrator(
            self.host,
            self.preferences,
            self.builder,
            paths,
            lifecycle=settings.lifecycle,
            geo_assets=self.geo_assets,
        )
        self.probe = LatencyProbe(self.builder, paths, settings.ping, settings.core, self.ports)

    def ensure_ports(self) -> tuple[int, int]:
        """Allocate and persist ports unless both are already stored."""
        socks_port = self.preferences.get(SOCKS_PORT_KEY)
        traffic_port = self.preferences.get(TRAFFIC_PORT_KEY)
        if socks_port is None or traffic_port is None:
            return self.ports.allocate_and_store(self.preferences)
        return socks_port, traffic_port

    async def traffic(self) -> Optional[TrafficStats]:
        port = self.preferences.get(TRAFFIC_PORT_KEY)
        if not isinstance(port, int):
            return None
        return await fetch_traffic_stats(port)

    async def ping(self, share_link: Optional[str] = None) -> int:
        link = share_link if share_link is not None else self.preferences.share_link
        if link is None:
            raise InvalidShareLink("No share link stored")
        return await self.probe.ping(link)

    def core_version(self) -> Optional[str]:
        return XrayCore(self.settings.core).version()

    async def shutdown(self) -> None:
        """Stop the tunnel and wait for teardown to finish."""
        await self.orchestrator.stop()
        if isinstance(self.host, LocalHostTunnel):
            await self.host.wait_stopped()
            self.registry.remove(self.host.name)
        self.orchestrator.close()
        logger.info("Tunnel service shut down")
