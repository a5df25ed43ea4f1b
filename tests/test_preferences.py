"""Tests for the preference store and port allocation."""

import json
import os
import socket
from unittest.mock import patch

import pytest

from xtunnel.errors import MissingPreference
from xtunnel.models.tunnel import VPNMode
from xtunnel.ports import DEFAULT_SOCKS_PORT, DEFAULT_TRAFFIC_PORT, PortAllocator
from xtunnel.preferences import (
    SHARE_LINK_KEY,
    SOCKS_PORT_KEY,
    TRAFFIC_PORT_KEY,
    VPN_MODE_KEY,
    PreferenceStore,
)


@pytest.fixture
def store(tmp_path):
    return PreferenceStore(tmp_path / "config" / "preferences.json")


def _external_write(path, values: dict) -> None:
    """Simulate another process rewriting the file."""
    path.write_text(json.dumps(values))
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 5))


class TestPreferenceStore:
    """Tests for PreferenceStore."""

    def test_empty_store(self, store):
        """Test defaults before anything is written."""
        assert store.get(SHARE_LINK_KEY) is None
        assert store.share_link is None
        assert store.mode == VPNMode.NON_GLOBAL
        assert store.all() == {}

    def test_set_persists(self, store):
        """Test that values are written to disk."""
        store.set_share_link("  vless://x  ")
        data = json.loads(store.preferences_file.read_text())
        assert data[SHARE_LINK_KEY] == "vless://x"

    def test_file_permissions(self, store):
        """Test owner-only permissions on the preferences file."""
        store.set("a", 1)
        if os.name != "nt":
            assert store.preferences_file.stat().st_mode & 0o777 == 0o600

    def test_mode_round_trip(self, store):
        """Test that the mode is stored under its wire key."""
        store.set_mode(VPNMode.GLOBAL)
        assert store.get(VPN_MODE_KEY) == "Global"
        assert store.mode == VPNMode.GLOBAL

    def test_unknown_stored_mode(self, store):
        """Test that an unknown stored mode falls back to NonGlobal."""
        store.set(VPN_MODE_KEY, "Turbo")
        assert store.mode == VPNMode.NON_GLOBAL

    def test_delete(self, store):
        """Test deleting keys."""
        store.set("a", 1)
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert not store.has("a")

    def test_reload_on_external_change(self, store):
        """Test that writes from another process are picked up."""
        store.set("a", 1)
        _external_write(store.preferences_file, {"a": 2, "b": 3})
        assert store.get("a") == 2
        assert store.has("b")

    def test_update_merges_external_change(self, store):
        """Test that a write does not clobber keys written elsewhere."""
        store.set("a", 1)
        _external_write(store.preferences_file, {"a": 1, "other": "x"})
        store.update({"c": 3})
        assert PreferenceStore(store.preferences_file).all() == {"a": 1, "other": "x", "c": 3}

    def test_corrupt_file_raises(self, tmp_path):
        """Test that a corrupt file is reported, not silently reset."""
        path = tmp_path / "preferences.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            PreferenceStore(path)

    def test_non_object_file_raises(self, tmp_path):
        """Test that a non-object JSON file is rejected."""
        path = tmp_path / "preferences.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            PreferenceStore(path)


class TestLoadTunnelPreferences:
    """Tests for load_tunnel_preferences."""

    def test_complete(self, store):
        """Test a full snapshot."""
        store.update({SHARE_LINK_KEY: "vless://x", SOCKS_PORT_KEY: 1080, TRAFFIC_PORT_KEY: 1081})
        prefs = store.load_tunnel_preferences()
        assert prefs.share_link == "vless://x"
        assert (prefs.socks_port, prefs.traffic_port) == (1080, 1081)
        assert prefs.mode == VPNMode.NON_GLOBAL

    @pytest.mark.parametrize("missing", [SHARE_LINK_KEY, SOCKS_PORT_KEY, TRAFFIC_PORT_KEY])
    def test_missing_key(self, store, missing):
        """Test that each required key is reported by name."""
        values = {SHARE_LINK_KEY: "vless://x", SOCKS_PORT_KEY: 1080, TRAFFIC_PORT_KEY: 1081}
        del values[missing]
        store.update(values)
        with pytest.raises(MissingPreference) as exc_info:
            store.load_tunnel_preferences()
        assert exc_info.value.key == missing
        assert exc_info.value.message == f"Missing preference: {missing}"

    def test_empty_link_passes_through(self, store):
        """Test that a present but empty link is left for the builder to reject."""
        store.update({SHARE_LINK_KEY: "", SOCKS_PORT_KEY: 1080, TRAFFIC_PORT_KEY: 1081})
        assert store.load_tunnel_preferences().share_link == ""


class TestPortAllocator:
    """Tests for PortAllocator."""

    def test_free_ports_are_distinct(self):
        """Test that one call never returns the same port twice."""
        ports = PortAllocator().free_ports(2)
        assert len(ports) == 2
        assert ports[0] != ports[1]
        assert all(1 <= p <= 65535 for p in ports)

    def test_fallback_to_defaults(self):
        """Test the fallback when binding fails."""
        with patch("xtunnel.ports.socket.socket", side_effect=OSError("no sockets")):
            assert PortAllocator().free_ports(2) == [DEFAULT_SOCKS_PORT, DEFAULT_TRAFFIC_PORT]

    def test_allocate_and_store(self, store):
        """Test that allocated ports are persisted under the wire keys."""
        socks_port, traffic_port = PortAllocator().allocate_and_store(store)
        assert store.get(SOCKS_PORT_KEY) == socks_port
        assert store.get(TRAFFIC_PORT_KEY) == traffic_port
        assert socks_port != traffic_port

    def test_allocated_port_is_bindable(self):
        """Test that a returned port can actually be bound afterwards."""
        port = PortAllocator().free_ports(1)[0]
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))
