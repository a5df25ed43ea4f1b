"""
Virtual network interface settings and their Linux realization.

The tunnel interface carries a private IPv4 and IPv6 address with default
routes for both families, and announces resolvers for all domains. On
Linux the default routes live in a dedicated routing table selected by an
``ip rule`` that skips packets carrying the proxy core's socket mark, so
the core's own upstream connections keep using the physical uplink.
"""

import asyncio
import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .core.config import InterfaceSettings
from .core.logging import get_logger
from .errors import InterfaceSetupFailure


logger = get_logger(__name__)


@dataclass
class IPv4Settings:
    address: str
    netmask: str
    include_default_route: bool = True

    @property
    def prefix_length(self) -> int:
        return ipaddress.IPv4Network(f"0.0.0.0/{self.netmask}").prefixlen


@dataclass
class IPv6Settings:
    address: str
    prefix_length: int
    include_default_route: bool = True


@dataclass
class DNSSettings:
    servers: list[str]
    # An empty string matches every domain.
    match_domains: list[str] = field(default_factory=lambda: [""])


@dataclass
class TunnelNetworkSettings:
    """Network configuration applied to the tunnel interface."""
    remote_address: str
    mtu: int
    ipv4: IPv4Settings
    ipv6: IPv6Settings
    dns: DNSSettings

    @classmethod
    def from_settings(
        cls,
        interface: InterfaceSettings,
        mtu: int,
        ipv4_resolvers: list[str],
    ) -> "TunnelNetworkSettings":
        return cls(
            remote_address=interface.remote_address,
            mtu=mtu,
            ipv4=IPv4Settings(interface.ipv4_address, interface.ipv4_netmask),
            ipv6=IPv6Settings(interface.ipv6_address, interface.ipv6_prefix),
            dns=DNSSettings(servers=list(ipv4_resolvers) + list(interface.ipv6_dns)),
        )


class LinuxInterfaceConfigurator:
    """
    Applies ``TunnelNetworkSettings`` with iproute2 and resolvectl.

    Commands are produced as argv lists by the ``plan_*`` methods and run
    one at a time; the first failing command aborts ``apply``.
    """

    def __init__(
        self,
        interface: InterfaceSettings,
        fwmark: Optional[int] = None,
        sys_class_net: Path = Path("/sys/class/net"),
    ):
        self.interface = interface
        self.fwmark = fwmark
        self.sys_class_net = sys_class_net

    @property
    def name(self) -> str:
        return self.interface.name

    def device_exists(self) -> bool:
        return (self.sys_class_net / self.name).exists()

    def plan_link(self, settings: TunnelNetworkSettings) -> list[list[str]]:
        name = self.name
        commands = []
        if not self.device_exists():
            commands.append(["ip", "tuntap", "add", "dev", name, "mode", "tun"])
        commands += [
            ["ip", "link", "set", "dev", name, "mtu", str(settings.mtu)],
            ["ip", "addr", "replace", f"{settings.ipv4.address}/{settings.ipv4.prefix_length}", "dev", name],
            ["ip", "-6", "addr", "replace", f"{settings.ipv6.address}/{settings.ipv6.prefix_length}", "dev", name],
            ["ip", "link", "set", "dev", name, "up"],
        ]
        return commands

    def plan_routes(self, settings: TunnelNetworkSettings) -> list[list[str]]:
        if self.fwmark is None:
            return []
        table = str(self.interface.route_table)
        commands = []
        if settings.ipv4.include_default_route:
            commands.append(["ip", "route", "replace", "default", "dev", self.name, "table", table])
        if settings.ipv6.include_default_route:
            commands.append(["ip", "-6", "route", "replace", "default", "dev", self.name, "table", table])
        return commands

    def _rule_specs(self) -> list[list[str]]:
        if self.fwmark is None:
            return []
        table = str(self.interface.route_table)
        specs = []
        for family in ("-4", "-6"):
            specs.append([family, "rule", "{op}", "not", "fwmark", str(self.fwmark), "table", table])
            specs.append([family, "rule", "{op}", "table", "main", "suppress_prefixlength", "0"])
        return specs

    def plan_rules(self, op: str) -> list[list[str]]:
        return [["ip"] + [op if part == "{op}" else part for part in spec] for spec in self._rule_specs()]

    def plan_dns(self, settings: TunnelNetworkSettings) -> list[list[str]]:
        if not self.interface.manage_dns or not settings.dns.servers:
            return []
        domains = ["~." if d == "" else d for d in settings.dns.match_domains]
        return [
            ["resolvectl", "dns", self.name] + settings.dns.servers,
            ["resolvectl", "domain", self.name] + domains,
        ]

    def plan_teardown(self) -> list[list[str]]:
        return self.plan_rules("del") + [["ip", "link", "del", "dev", self.name]]

    async def _run(self, argv: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise InterfaceSetupFailure(f"Could not run {argv[0]}: {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise InterfaceSetupFailure(
                f"`{' '.join(argv)}` failed ({process.returncode}): {stderr.decode(errors='replace').strip()}"
            )

    async def _run_best_effort(self, argv: list[str]) -> bool:
        try:
            await self._run(argv)
            return True
        except InterfaceSetupFailure as e:
            logger.debug("Ignoring command failure", error=str(e))
            return False

    async def apply(self, settings: TunnelNetworkSettings) -> None:
        """
        Bring the interface up with ``settings``; safe to call again.

        Raises:
            InterfaceSetupFailure: any command failed
        """
        for argv in self.plan_link(settings) + self.plan_routes(settings):
            await self._run(argv)

        # Rules are not idempotent; drop stale copies before re-adding.
        for argv in self.plan_rules("del"):
            await self._run_best_effort(argv)
        for argv in self.plan_rules("add"):
            await self._run(argv)

        for argv in self.plan_dns(settings):
            await self._run(argv)

        logger.info(
            "Tunnel interface configured",
            interface=self.name,
            mtu=settings.mtu,
            ipv4=settings.ipv4.address,
            ipv6=settings.ipv6.address,
            dns=settings.dns.servers,
            routed=self.fwmark is not None,
        )
        if self.fwmark is None:
            logger.warning("No outbound mark configured; default routes left untouched", interface=self.name)

    async def teardown(self) -> None:
        """Remove rules and the device. Never raises."""
        for argv in self.plan_teardown():
            await self._run_best_effort(argv)
        logger.info("Tunnel interface removed", interface=self.name)
