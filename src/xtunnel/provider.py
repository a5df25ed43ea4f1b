"""
Packet tunnel provider.

Brings a tunnel up in a fixed order, interface first, then the proxy core,
then the translator that feeds interface packets into the core's SOCKS
inbound, and takes it down in reverse.
"""

import asyncio
from typing import Optional

from .builder import write_config
from .core.config import Settings
from .core.logging import get_logger
from .dns import build_dns_policy, resolver_addresses
from .launchers import Tun2Socks, XrayCore
from .models.tunnel import TunnelStartOptions
from .network import LinuxInterfaceConfigurator, TunnelNetworkSettings
from .paths import XTunnelPaths


logger = get_logger(__name__)


class PacketTunnelProvider:
    """Owns the interface, the core and the translator of one tunnel."""

    def __init__(
        self,
        settings: Settings,
        paths: XTunnelPaths,
        core: Optional[XrayCore] = None,
        translator: Optional[Tun2Socks] = None,
        configurator: Optional[LinuxInterfaceConfigurator] = None,
    ):
        self.settings = settings
        self.paths = paths
        self.core = core or XrayCore(settings.core, log_path=paths.logs_dir / "xray.log")
        self.translator = translator or Tun2Socks(
            paths.tun2socks_config_file,
            settings.tun2socks,
            log_path=paths.logs_dir / "tun2socks.log",
        )
        self.configurator = configurator or LinuxInterfaceConfigurator(
            settings.interface,
            fwmark=settings.core.outbound_mark,
        )
        self._interface_up = False

    def network_settings(self) -> TunnelNetworkSettings:
        resolvers = resolver_addresses(build_dns_policy(geo_assets_present=False))
        return TunnelNetworkSettings.from_settings(
            self.settings.interface,
            mtu=self.settings.tun2socks.mtu,
            ipv4_resolvers=resolvers,
        )

    async def start_tunnel(self, options: TunnelStartOptions) -> None:
        """
        Start interface, core and translator in that order.

        Whatever was started is torn down again if a later step fails, and
        the original error is re-raised.
        """
        config_path = options.config_path
        if config_path is None:
            config_path = write_config(self.paths.runtime_config_file, options.config_blob)

        try:
            await self.configurator.apply(self.network_settings())
            self._interface_up = True

            await self.core.start(self.paths.assets_dir, config_path)

            completion = await self.translator.start(options.socks_port, self.settings.interface.name)
            completion.add_done_callback(self._translator_finished)
        except BaseException as e:
            logger.error("Tunnel start failed, rolling back", error=str(e))
            await self.stop_tunnel()
            raise

        logger.info(
            "Tunnel provider started",
            interface=self.settings.interface.name,
            socks_port=options.socks_port,
            config=str(config_path),
        )

    def _translator_finished(self, completion: asyncio.Future) -> None:
        if completion.cancelled():
            return
        code = completion.result()
        if code == 0:
            logger.info("tun2socks completed")
        elif code < 0 and self.translator.quitting:
            # Terminated by our own teardown.
            logger.info("tun2socks stopped", signal=-code)
        else:
            logger.error("tun2socks failed", code=code)

    async def stop_tunnel(self) -> None:
        """Stop translator, core and interface; each step is attempted."""
        for step, action in (
            ("tun2socks", self.translator.quit),
            ("proxy core", self.core.stop),
            ("interface", self._teardown_interface),
        ):
            try:
                await action()
            except Exception as e:
                logger.error("Teardown step failed", step=step, error=str(e))

    async def _teardown_interface(self) -> None:
        if self._interface_up or self.configurator.device_exists():
            await self.configurator.teardown()
        self._interface_up = False

    async def reassert(self) -> None:
        """Re-apply interface settings after a network change."""
        await self.configurator.apply(self.network_settings())
        self._interface_up = True
