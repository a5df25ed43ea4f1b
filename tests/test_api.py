"""
Tests for the FastAPI control API endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from xtunnel.api.app import create_app
from xtunnel.core.config import Settings
from xtunnel.errors import CoreLaunchFailure
from xtunnel.models.tunnel import SessionSummary, TrafficStats, TunnelStatus, VPNMode
from xtunnel.preferences import SHARE_LINK_KEY, SOCKS_PORT_KEY, TRAFFIC_PORT_KEY
from xtunnel.services.tunnel_service import TunnelService

from conftest import FakeHost, StaticConverter, VLESS_LINK, ok_envelope


PROXY_OUTBOUND = {
    "protocol": "vless",
    "settings": {"vnext": [{"address": "edge.example.com", "port": 443, "users": [{"id": "u"}]}]},
}


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def service(paths, host):
    """Tunnel service with an in-memory host and a fixed converter."""
    service = TunnelService(
        Settings(),
        paths,
        host=host,
        converter=StaticConverter(ok_envelope(dict(PROXY_OUTBOUND))),
    )
    service.preferences.update({SHARE_LINK_KEY: VLESS_LINK, SOCKS_PORT_KEY: 10808, TRAFFIC_PORT_KEY: 10809})
    return service


@pytest.fixture
def client(service):
    """Create test client sharing one event loop across requests."""
    with TestClient(create_app(service)) as client:
        yield client


@pytest.fixture
def auth_headers():
    """Provide authentication headers."""
    return {"X-API-Key": "test-api-key"}


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client):
        """Test basic health check."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "xtunnel"

    def test_readiness_check(self, client):
        """Test readiness with a service attached."""
        response = client.get("/api/health/ready")
        assert response.json()["status"] == "ready"

    def test_not_ready_without_service(self):
        """Test readiness before a service is attached."""
        response = TestClient(create_app()).get("/api/health/ready")
        assert response.json()["status"] == "starting"

    def test_root(self, client):
        """Test the root info endpoint."""
        data = client.get("/").json()
        assert data["health"] == "/api/health"


class TestAuthentication:
    """Tests for API key checks."""

    @patch.dict("os.environ", {"XTUNNEL_API_KEY": "test-api-key"})
    def test_missing_key(self, client):
        """Test that control endpoints require an API key."""
        assert client.get("/api/tunnel").status_code == 401

    @patch.dict("os.environ", {"XTUNNEL_API_KEY": "test-api-key"})
    def test_wrong_key(self, client):
        """Test that a wrong key is rejected."""
        response = client.get("/api/tunnel", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    def test_key_not_configured(self, client, auth_headers):
        """Test that the API refuses to run without a configured key."""
        with patch.dict("os.environ", clear=False) as environ:
            environ.pop("XTUNNEL_API_KEY", None)
            response = client.get("/api/tunnel", headers=auth_headers)
        assert response.status_code == 503


@patch.dict("os.environ", {"XTUNNEL_API_KEY": "test-api-key"})
class TestTunnelEndpoints:
    """Tests for tunnel lifecycle endpoints."""

    def test_status(self, client, auth_headers):
        """Test the status document of an idle tunnel."""
        response = client.get("/api/tunnel", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "disconnected"
        assert data["mode"] == "NonGlobal"
        assert (data["socks_port"], data["traffic_port"]) == (10808, 10809)
        assert data["share_link_set"] is True
        assert data["other_sessions"] == []

    def test_start(self, client, auth_headers, host):
        """Test starting the tunnel."""
        response = client.post("/api/tunnel/start", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "connected"
        assert host.calls == ["register", "start"]

    def test_start_conflict(self, client, auth_headers, host):
        """Test that another active tunnel maps to 409 with its name."""
        host.other_sessions = [SessionSummary(name="work", status=TunnelStatus.CONNECTED, pid=1)]
        response = client.post("/api/tunnel/start", headers=auth_headers)
        assert response.status_code == 409
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "conflict"
        assert data["details"]["sessions"][0]["name"] == "work"

    def test_start_missing_preference(self, client, auth_headers, service):
        """Test that a missing preference maps to 400 naming the key."""
        service.preferences.delete(SOCKS_PORT_KEY)
        response = client.post("/api/tunnel/start", headers=auth_headers)
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "missing_preference"
        assert data["details"] == {"key": SOCKS_PORT_KEY}

    def test_start_launch_failure(self, client, auth_headers, host):
        """Test that launch failures map to 502."""
        host.start_error = CoreLaunchFailure("core exited")
        response = client.post("/api/tunnel/start", headers=auth_headers)
        assert response.status_code == 502
        assert response.json()["error"] == "core_launch_failure"

    def test_stop(self, client, auth_headers, host):
        """Test that stop reports the Disconnecting state."""
        client.post("/api/tunnel/start", headers=auth_headers)
        response = client.post("/api/tunnel/stop", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "disconnecting"

    def test_update_mode(self, client, auth_headers, service):
        """Test changing mode on an idle tunnel."""
        response = client.put("/api/tunnel/mode", json={"mode": "Global"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"mode": "Global", "restarted": False}
        assert service.preferences.mode == VPNMode.GLOBAL

    def test_update_mode_invalid(self, client, auth_headers):
        """Test that unknown modes fail validation."""
        response = client.put("/api/tunnel/mode", json={"mode": "Turbo"}, headers=auth_headers)
        assert response.status_code == 422

    def test_update_link(self, client, auth_headers, service):
        """Test replacing the share link."""
        response = client.put("/api/tunnel/link", json={"share_link": "vless://new@h:443"}, headers=auth_headers)
        assert response.status_code == 200
        assert service.preferences.share_link == "vless://new@h:443"

    def test_update_link_rejected(self, client, auth_headers, service):
        """Test that a link the converter rejects is not stored."""
        service.builder.converter = StaticConverter({"success": False, "error": "unsupported scheme"})
        response = client.put("/api/tunnel/link", json={"share_link": "bogus://x"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_share_link"
        assert service.preferences.share_link == VLESS_LINK

    def test_preview_config(self, client, auth_headers):
        """Test the configuration preview."""
        response = client.get("/api/tunnel/config", headers=auth_headers)
        assert response.status_code == 200
        assert [o["tag"] for o in response.json()["outbounds"]] == ["proxy", "direct", "block"]

    def test_traffic_unavailable(self, client, auth_headers, service):
        """Test traffic counters when the core cannot be reached."""
        service.traffic = AsyncMock(return_value=None)
        response = client.get("/api/tunnel/traffic", headers=auth_headers)
        assert response.json() == {"available": False, "downlink": 0, "uplink": 0}

    def test_traffic(self, client, auth_headers, service):
        """Test traffic counters of a running core."""
        service.traffic = AsyncMock(return_value=TrafficStats(downlink=2048, uplink=512))
        response = client.get("/api/tunnel/traffic", headers=auth_headers)
        assert response.json() == {"available": True, "downlink": 2048, "uplink": 512}


@patch.dict("os.environ", {"XTUNNEL_API_KEY": "test-api-key"})
class TestGeoEndpoints:
    """Tests for geo asset endpoints."""

    def test_list_empty(self, client, auth_headers):
        """Test listing before any download."""
        response = client.get("/api/geo", headers=auth_headers)
        assert response.json() == {"present": False, "files": []}

    def test_list_and_clear(self, client, auth_headers, paths):
        """Test listing and removing assets."""
        (paths.assets_dir / "geoip.dat").write_bytes(b"12345")
        response = client.get("/api/geo", headers=auth_headers)
        assert response.json()["files"] == [{"name": "geoip.dat", "size": 5}]

        response = client.delete("/api/geo", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"restarted": False}
        assert not (paths.assets_dir / "geoip.dat").exists()
