"""Tests for the proxy core and tun2socks launchers, using shell-script stand-ins."""

import asyncio
import stat
import sys

import pytest
import yaml

from xtunnel.core.config import CoreSettings, Tun2SocksSettings
from xtunnel.errors import CoreLaunchFailure, TunnelError
from xtunnel.launchers import Tun2Socks, XrayCore, resolve_binary


pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


def _script(path, body: str):
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestResolveBinary:
    """Tests for resolve_binary."""

    def test_explicit_path(self, tmp_path):
        """Test that executable paths are accepted as-is."""
        script = _script(tmp_path / "core", "exit 0")
        assert resolve_binary(str(script)) == str(script)

    def test_non_executable_path(self, tmp_path):
        """Test that a non-executable path is rejected."""
        path = tmp_path / "core"
        path.write_text("")
        assert resolve_binary(str(path)) is None

    def test_missing_name(self):
        """Test that unknown names resolve to None."""
        assert resolve_binary("xtunnel-no-such-binary") is None


class TestXrayCore:
    """Tests for XrayCore."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, tmp_path):
        """Test a core that keeps running until stopped."""
        record = tmp_path / "record"
        script = _script(
            tmp_path / "xray",
            f'echo "$XRAY_LOCATION_ASSET|$GOMEMLIMIT|$*" > "{record}"\nexec sleep 30',
        )
        core = XrayCore(CoreSettings(binary=str(script), startup_grace=0.2, stop_timeout=2))
        await core.start(tmp_path / "assets", tmp_path / "config.json")
        try:
            assert core.running
            assert core.pid is not None
            assets, memlimit, args = record.read_text().strip().split("|")
            assert assets == str(tmp_path / "assets")
            assert memlimit == "50MiB"
            assert args == f"run -c {tmp_path / 'config.json'}"
        finally:
            await core.stop()
        assert not core.running

    @pytest.mark.asyncio
    async def test_early_exit(self, tmp_path):
        """Test that a core exiting during the grace period is a launch failure."""
        script = _script(tmp_path / "xray", "echo 'Failed to start: bad config'\nexit 23")
        core = XrayCore(
            CoreSettings(binary=str(script), startup_grace=0.3),
            log_path=tmp_path / "logs" / "core.log",
        )
        with pytest.raises(CoreLaunchFailure) as exc_info:
            await core.start(tmp_path, tmp_path / "config.json")
        assert "code 23" in exc_info.value.message
        assert "bad config" in exc_info.value.message
        assert not core.running

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """Test that a missing core binary is a launch failure."""
        core = XrayCore(CoreSettings(binary="xtunnel-no-such-xray"))
        with pytest.raises(CoreLaunchFailure, match="not found"):
            await core.start(tmp_path, tmp_path / "config.json")

    @pytest.mark.asyncio
    async def test_kill_after_timeout(self, tmp_path):
        """Test that a core ignoring SIGTERM is killed."""
        script = _script(tmp_path / "xray", "trap '' TERM\nwhile true; do sleep 0.1; done")
        core = XrayCore(CoreSettings(binary=str(script), startup_grace=0.2, stop_timeout=0.5))
        await core.start(tmp_path, tmp_path / "config.json")
        await core.stop()
        assert not core.running

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        """Test that stopping an idle core is a no-op."""
        await XrayCore(CoreSettings()).stop()

    def test_version(self, tmp_path):
        """Test reading the core version."""
        script = _script(tmp_path / "xray", 'echo "Xray 1.8.24 (Xray, Penetrates Everything.)"\necho more')
        assert XrayCore(CoreSettings(binary=str(script))).version() == "Xray 1.8.24 (Xray, Penetrates Everything.)"

    def test_version_without_binary(self):
        """Test that a missing binary has no version."""
        assert XrayCore(CoreSettings(binary="xtunnel-no-such-xray")).version() is None


class TestTun2Socks:
    """Tests for Tun2Socks."""

    def test_render_config(self, tmp_path):
        """Test the translator YAML layout."""
        translator = Tun2Socks(tmp_path / "tun2socks.yaml")
        config = translator.render_config(10808, "xtun0")
        assert config["tunnel"] == {"name": "xtun0", "mtu": 8500}
        assert config["socks5"] == {"port": 10808, "address": "127.0.0.1", "udp": "udp"}
        assert config["misc"]["task-stack-size"] == 20480
        assert config["misc"]["connect-timeout"] == 5000
        assert config["misc"]["read-write-timeout"] == 60000
        assert config["misc"]["log-level"] == "warn"
        assert config["misc"]["limit-nofile"] == 65535

    def test_write_config(self, tmp_path):
        """Test that the YAML file is written and parseable."""
        translator = Tun2Socks(tmp_path / "run" / "tun2socks.yaml", Tun2SocksSettings(mtu=1500))
        path = translator.write_config(1080, "tun9")
        data = yaml.safe_load(path.read_text())
        assert data["tunnel"]["mtu"] == 1500
        assert data["socks5"]["port"] == 1080

    @pytest.mark.asyncio
    async def test_completion_resolves_once(self, tmp_path):
        """Test that the completion future carries the exit code."""
        script = _script(tmp_path / "hev", "exit 0")
        translator = Tun2Socks(tmp_path / "t.yaml", Tun2SocksSettings(binary=str(script)))
        completion = await translator.start(1080, "xtun0")
        assert await asyncio.wait_for(completion, 5) == 0
        await translator.quit()

    @pytest.mark.asyncio
    async def test_error_exit_code(self, tmp_path):
        """Test that a failing translator reports its exit code."""
        script = _script(tmp_path / "hev", "exit 4")
        translator = Tun2Socks(tmp_path / "t.yaml", Tun2SocksSettings(binary=str(script)))
        completion = await translator.start(1080, "xtun0")
        assert await asyncio.wait_for(completion, 5) == 4
        await translator.quit()

    @pytest.mark.asyncio
    async def test_quit_resolves_completion(self, tmp_path):
        """Test that quitting a running translator settles its future."""
        script = _script(tmp_path / "hev", "exec sleep 30")
        translator = Tun2Socks(tmp_path / "t.yaml", Tun2SocksSettings(binary=str(script)))
        completion = await translator.start(1080, "xtun0")
        assert translator.running
        await translator.quit()
        assert completion.done()
        assert translator.quitting
        assert not translator.running

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """Test that a missing translator raises."""
        translator = Tun2Socks(tmp_path / "t.yaml", Tun2SocksSettings(binary="xtunnel-no-such-hev"))
        with pytest.raises(TunnelError, match="not found"):
            await translator.start(1080, "xtun0")
