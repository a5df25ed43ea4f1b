"""Tests for traffic counters and the latency probe."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from xtunnel.builder import ConfigurationBuilder
from xtunnel.diagnostics import LatencyProbe, fetch_traffic_stats, parse_traffic
from xtunnel.errors import CoreLaunchFailure, InvalidShareLink
from xtunnel.models.tunnel import TrafficStats

from conftest import StaticConverter, VLESS_LINK, ok_envelope


VARS = {"stats": {"inbound": {"socks": {"downlink": 4096, "uplink": 1024}}}}


@pytest_asyncio.fixture
async def metrics_server():
    """Stand-in for the core's metrics endpoint."""
    payloads = {"body": VARS}

    async def debug_vars(request):
        return web.json_response(payloads["body"])

    app = web.Application()
    app.router.add_get("/debug/vars", debug_vars)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    server.payloads = payloads
    yield server
    await server.close()


class TestParseTraffic:
    """Tests for parse_traffic."""

    def test_counters(self):
        """Test reading the SOCKS inbound counters."""
        assert parse_traffic(VARS) == TrafficStats(downlink=4096, uplink=1024)

    @pytest.mark.parametrize("payload", [
        {},
        {"stats": {}},
        {"stats": {"inbound": {"api": {"downlink": 1, "uplink": 1}}}},
        {"stats": {"inbound": {"socks": {"downlink": "x", "uplink": 1}}}},
        None,
        [],
    ])
    def test_missing_counters(self, payload):
        """Test that incomplete payloads yield None."""
        assert parse_traffic(payload) is None


class TestFetchTrafficStats:
    """Tests for fetch_traffic_stats."""

    @pytest.mark.asyncio
    async def test_fetch(self, metrics_server):
        """Test fetching counters over HTTP."""
        stats = await fetch_traffic_stats(metrics_server.port)
        assert stats == TrafficStats(downlink=4096, uplink=1024)

    @pytest.mark.asyncio
    async def test_no_counters_yet(self, metrics_server):
        """Test a core that has not relayed any traffic yet."""
        metrics_server.payloads["body"] = {"memstats": {}}
        assert await fetch_traffic_stats(metrics_server.port) is None

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Test that a closed port yields None instead of raising."""
        assert await fetch_traffic_stats(9, timeout=2) is None


class TestLatencyProbe:
    """Tests for LatencyProbe."""

    @pytest.fixture
    def builder(self):
        return ConfigurationBuilder(StaticConverter(ok_envelope({"protocol": "vless", "settings": {}})))

    @pytest.mark.asyncio
    async def test_ping(self, builder, paths):
        """Test that the probe core is started, measured through and cleaned up."""
        core = MagicMock()
        core.start = AsyncMock()
        core.stop = AsyncMock()
        probe = LatencyProbe(builder, paths)
        probe._measure = AsyncMock(return_value=42)

        with patch("xtunnel.diagnostics.XrayCore", return_value=core):
            assert await probe.ping(VLESS_LINK) == 42

        core.start.assert_awaited_once_with(paths.assets_dir, paths.ping_config_file)
        core.stop.assert_awaited_once()
        assert not paths.ping_config_file.exists()

    @pytest.mark.asyncio
    async def test_ping_core_failure(self, builder, paths):
        """Test that a probe core that fails to start is reported."""
        core = MagicMock()
        core.start = AsyncMock(side_effect=CoreLaunchFailure("exited"))
        probe = LatencyProbe(builder, paths)

        with patch("xtunnel.diagnostics.XrayCore", return_value=core):
            with pytest.raises(CoreLaunchFailure):
                await probe.ping(VLESS_LINK)

    @pytest.mark.asyncio
    async def test_ping_empty_link(self, builder, paths):
        """Test that an empty link fails before a core is launched."""
        with patch("xtunnel.diagnostics.XrayCore") as core_cls:
            with pytest.raises(InvalidShareLink):
                await LatencyProbe(builder, paths).ping("")
        core_cls.assert_not_called()
