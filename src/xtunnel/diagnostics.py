"""
Diagnostics: traffic counters and share-link latency.

Traffic counters come from the proxy core's metrics endpoint, served on the
loopback metrics inbound. Latency is measured by running a throwaway core
with the reduced ping configuration and timing one HTTP request through its
SOCKS inbound.
"""

import asyncio
import time
from typing import Any, Optional

import aiohttp
from aiohttp_socks import ProxyConnector

from .builder import ConfigurationBuilder, write_config
from .core.config import CoreSettings, PingSettings
from .core.logging import get_logger
from .errors import TunnelError
from .launchers import XrayCore
from .models.tunnel import TrafficStats
from .paths import XTunnelPaths
from .ports import PortAllocator


logger = get_logger(__name__)


def parse_traffic(payload: Any) -> Optional[TrafficStats]:
    """Extract ``stats.inbound.socks`` counters; None if any node is missing."""
    try:
        socks = payload["stats"]["inbound"]["socks"]
        return TrafficStats(downlink=int(socks["downlink"]), uplink=int(socks["uplink"]))
    except (KeyError, TypeError, ValueError):
        return None


async def fetch_traffic_stats(
    metrics_port: int,
    session: Optional[aiohttp.ClientSession] = None,
    timeout: float = 3.0,
) -> Optional[TrafficStats]:
    """
    Read byte counters of the SOCKS inbound.

    Returns None when the core is unreachable or the payload lacks the
    counters (they only appear after the first byte has been relayed).
    """
    url = f"http://127.0.0.1:{metrics_port}/debug/vars"
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))

    try:
        async with session.get(url) as response:
            if response.status != 200:
                logger.debug("Metrics endpoint returned error", status=response.status)
                return None
            payload = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.debug("Could not read traffic stats", url=url, error=str(e))
        return None
    finally:
        if owns_session:
            await session.close()

    return parse_traffic(payload)


class LatencyProbe:
    """Measures round-trip latency through a share link's proxy."""

    def __init__(
        self,
        builder: ConfigurationBuilder,
        paths: XTunnelPaths,
        settings: Optional[PingSettings] = None,
        core_settings: Optional[CoreSettings] = None,
        ports: Optional[PortAllocator] = None,
    ):
        self.builder = builder
        self.paths = paths
        self.settings = settings or PingSettings()
        self.core_settings = core_settings or builder.settings
        self.ports = ports or PortAllocator()

    async def ping(self, share_link: str) -> int:
        """
        Latency in milliseconds of one GET of the probe URL.

        Raises:
            ConfigError: the link cannot be turned into a configuration
            CoreLaunchFailure: the probe core did not start
            TunnelError: the request failed or timed out
        """
        port = self.ports.free_ports(1)[0]
        config = self.builder.build_ping(share_link, port)
        config_path = write_config(self.paths.ping_config_file, self.builder.serialize(config))

        core = XrayCore(self.core_settings, log_path=self.paths.logs_dir / "ping.log")
        await core.start(self.paths.assets_dir, config_path)
        try:
            return await self._measure(port)
        finally:
            await core.stop()
            config_path.unlink(missing_ok=True)

    async def _measure(self, port: int) -> int:
        connector = ProxyConnector.from_url(f"socks5://127.0.0.1:{port}", rdns=True)
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout)
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            started = time.monotonic()
            try:
                async with session.get(self.settings.url) as response:
                    await response.read()
                    status = response.status
                latency = int((time.monotonic() - started) * 1000)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                raise TunnelError(f"Latency probe failed: {e}") from e

        if status >= 400:
            raise TunnelError(f"Latency probe got HTTP {status}")
        logger.info("Latency measured", url=self.settings.url, latency_ms=latency)
        return latency
