"""Tests for tunnel network settings and the Linux interface configurator."""

import pytest

from xtunnel.core.config import InterfaceSettings
from xtunnel.errors import InterfaceSetupFailure
from xtunnel.network import LinuxInterfaceConfigurator, TunnelNetworkSettings


@pytest.fixture
def interface():
    return InterfaceSettings(name="xtest0", route_table=123)


@pytest.fixture
def settings(interface):
    return TunnelNetworkSettings.from_settings(interface, 8500, ["1.1.1.1", "8.8.8.8"])


class RecordingConfigurator(LinuxInterfaceConfigurator):
    """Configurator that records commands instead of running them."""

    def __init__(self, *args, fail_on=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.commands = []
        self.fail_on = fail_on

    async def _run(self, argv):
        self.commands.append(argv)
        if self.fail_on and argv[:len(self.fail_on)] == self.fail_on:
            raise InterfaceSetupFailure(f"{' '.join(argv)} failed")


class TestTunnelNetworkSettings:
    """Tests for TunnelNetworkSettings."""

    def test_defaults(self, settings):
        """Test addresses derived from interface settings."""
        assert settings.remote_address == "fd00::1"
        assert settings.mtu == 8500
        assert settings.ipv4.address == "198.18.0.1"
        assert settings.ipv4.prefix_length == 24
        assert settings.ipv6.address == "fd6e:a81b:704f:1211::1"
        assert settings.ipv6.prefix_length == 64
        assert settings.ipv4.include_default_route and settings.ipv6.include_default_route

    def test_dns_servers(self, settings):
        """Test that IPv4 resolvers come first and every domain matches."""
        assert settings.dns.servers == [
            "1.1.1.1", "8.8.8.8", "2606:4700:4700::1111", "2001:4860:4860::8888"
        ]
        assert settings.dns.match_domains == [""]


class TestLinuxInterfaceConfigurator:
    """Tests for command planning."""

    def test_plan_link_creates_missing_device(self, interface, settings, tmp_path):
        """Test that a missing device is created first."""
        configurator = LinuxInterfaceConfigurator(interface, sys_class_net=tmp_path)
        commands = configurator.plan_link(settings)
        assert commands[0] == ["ip", "tuntap", "add", "dev", "xtest0", "mode", "tun"]
        assert ["ip", "link", "set", "dev", "xtest0", "mtu", "8500"] in commands
        assert ["ip", "addr", "replace", "198.18.0.1/24", "dev", "xtest0"] in commands
        assert ["ip", "-6", "addr", "replace", "fd6e:a81b:704f:1211::1/64", "dev", "xtest0"] in commands
        assert commands[-1] == ["ip", "link", "set", "dev", "xtest0", "up"]

    def test_plan_link_reuses_existing_device(self, interface, settings, tmp_path):
        """Test that an existing device is not recreated."""
        (tmp_path / "xtest0").mkdir()
        configurator = LinuxInterfaceConfigurator(interface, sys_class_net=tmp_path)
        assert configurator.device_exists()
        assert all(cmd[1] != "tuntap" for cmd in configurator.plan_link(settings))

    def test_routes_and_rules_need_mark(self, interface, settings):
        """Test that no routing changes are planned without a socket mark."""
        configurator = LinuxInterfaceConfigurator(interface)
        assert configurator.plan_routes(settings) == []
        assert configurator.plan_rules("add") == []

    def test_plan_routes(self, interface, settings):
        """Test default routes in the dedicated table."""
        configurator = LinuxInterfaceConfigurator(interface, fwmark=255)
        assert configurator.plan_routes(settings) == [
            ["ip", "route", "replace", "default", "dev", "xtest0", "table", "123"],
            ["ip", "-6", "route", "replace", "default", "dev", "xtest0", "table", "123"],
        ]

    def test_plan_rules(self, interface):
        """Test fwmark policy rules for both families."""
        configurator = LinuxInterfaceConfigurator(interface, fwmark=255)
        assert configurator.plan_rules("add") == [
            ["ip", "-4", "rule", "add", "not", "fwmark", "255", "table", "123"],
            ["ip", "-4", "rule", "add", "table", "main", "suppress_prefixlength", "0"],
            ["ip", "-6", "rule", "add", "not", "fwmark", "255", "table", "123"],
            ["ip", "-6", "rule", "add", "table", "main", "suppress_prefixlength", "0"],
        ]

    def test_plan_dns(self, interface, settings):
        """Test resolvectl commands with the catch-all routing domain."""
        configurator = LinuxInterfaceConfigurator(interface)
        assert configurator.plan_dns(settings) == [
            ["resolvectl", "dns", "xtest0"] + settings.dns.servers,
            ["resolvectl", "domain", "xtest0", "~."],
        ]

    def test_plan_dns_disabled(self, settings):
        """Test that DNS management can be switched off."""
        configurator = LinuxInterfaceConfigurator(InterfaceSettings(name="xtest0", manage_dns=False))
        assert configurator.plan_dns(settings) == []

    def test_plan_teardown(self, interface):
        """Test that teardown removes rules before the device."""
        configurator = LinuxInterfaceConfigurator(interface, fwmark=255)
        commands = configurator.plan_teardown()
        assert all(cmd[3] == "del" for cmd in commands[:-1])
        assert commands[-1] == ["ip", "link", "del", "dev", "xtest0"]


class TestApply:
    """Tests for apply and teardown execution."""

    @pytest.mark.asyncio
    async def test_apply_order(self, interface, settings, tmp_path):
        """Test that stale rules are dropped before new ones are added."""
        configurator = RecordingConfigurator(interface, fwmark=255, sys_class_net=tmp_path)
        await configurator.apply(settings)
        ops = [cmd[3] for cmd in configurator.commands if len(cmd) > 3 and cmd[2] == "rule"]
        assert ops == ["del"] * 4 + ["add"] * 4
        assert configurator.commands[-1][0] == "resolvectl"

    @pytest.mark.asyncio
    async def test_apply_ignores_missing_stale_rules(self, interface, settings, tmp_path):
        """Test that failing rule deletions do not abort apply."""
        configurator = RecordingConfigurator(
            interface, fwmark=255, sys_class_net=tmp_path, fail_on=["ip", "-4", "rule", "del"]
        )
        await configurator.apply(settings)
        assert configurator.commands[-1][0] == "resolvectl"

    @pytest.mark.asyncio
    async def test_apply_stops_on_failure(self, interface, settings, tmp_path):
        """Test that the first failing setup command aborts apply."""
        configurator = RecordingConfigurator(
            interface, fwmark=255, sys_class_net=tmp_path, fail_on=["ip", "link", "set"]
        )
        with pytest.raises(InterfaceSetupFailure):
            await configurator.apply(settings)
        assert not any(cmd[0] == "resolvectl" for cmd in configurator.commands)

    @pytest.mark.asyncio
    async def test_teardown_never_raises(self, interface):
        """Test that teardown swallows command failures."""
        configurator = RecordingConfigurator(interface, fwmark=255, fail_on=["ip"])
        await configurator.teardown()
        assert configurator.commands[-1] == ["ip", "link", "del", "dev", "xtest0"]

    @pytest.mark.asyncio
    async def test_run_missing_binary(self, interface):
        """Test that a missing executable is an interface setup failure."""
        configurator = LinuxInterfaceConfigurator(interface)
        with pytest.raises(InterfaceSetupFailure):
            await configurator._run(["/nonexistent/xtunnel-ip"])

    @pytest.mark.asyncio
    async def test_run_nonzero_exit(self, interface):
        """Test that a non-zero exit status is reported with stderr."""
        configurator = LinuxInterfaceConfigurator(interface)
        with pytest.raises(InterfaceSetupFailure, match="boom"):
            await configurator._run(["sh", "-c", "echo boom >&2; exit 3"])
