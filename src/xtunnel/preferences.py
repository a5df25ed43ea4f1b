"""
Persisted tunnel preferences.

A small JSON key/value file shared by the CLI, the control API and the
orchestrator. Writes are last-writer-wins; readers pick up changes made by
other processes by checking the file's modification time.
"""

import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .core.logging import get_logger
from .errors import MissingPreference
from .models.tunnel import VPNMode


logger = get_logger(__name__)

SOCKS_PORT_KEY = "socks5Port"
TRAFFIC_PORT_KEY = "trafficPort"
SHARE_LINK_KEY = "configLink"
VPN_MODE_KEY = "VPNMode"


def _stored_mode(value: Any) -> VPNMode:
    try:
        return VPNMode.parse(value)
    except ValueError:
        logger.warning("Ignoring unknown stored VPN mode", value=value)
        return VPNMode.NON_GLOBAL


@dataclass(frozen=True)
class TunnelPreferences:
    """Preferences needed to build a runtime configuration."""
    share_link: str
    socks_port: Any
    traffic_port: Any
    mode: VPNMode


class PreferenceStore:
    """JSON-file backed preference store with hot reload."""

    def __init__(self, preferences_file: Path):
        self.preferences_file = preferences_file
        self._values: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._last_mtime: float = 0.0
        self._load()

    def _load(self) -> None:
        if not self.preferences_file.exists():
            self._values = {}
            return

        try:
            data = json.loads(self.preferences_file.read_text(encoding="utf-8") or "{}")
        except ValueError as e:
            logger.error("Preferences file is corrupt", path=str(self.preferences_file), error=str(e))
            raise

        if not isinstance(data, dict):
            raise ValueError(f"Preferences file must hold an object: {self.preferences_file}")
        self._values = data
        self._last_mtime = self.preferences_file.stat().st_mtime

    def _save(self) -> None:
        self.preferences_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.preferences_file.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        if os.name != 'nt':
            os.chmod(tmp, 0o600)
        os.replace(tmp, self.preferences_file)
        self._last_mtime = self.preferences_file.stat().st_mtime

    def reload_if_changed(self) -> bool:
        """Reload if another writer touched the file."""
        if not self.preferences_file.exists():
            return False

        current_mtime = self.preferences_file.stat().st_mtime
        if current_mtime != self._last_mtime:
            with self._lock:
                self._load()
            logger.debug("Preferences reloaded", path=str(self.preferences_file))
            return True
        return False

    def get(self, key: str, default: Any = None) -> Any:
        self.reload_if_changed()
        return self._values.get(key, default)

    def has(self, key: str) -> bool:
        self.reload_if_changed()
        return key in self._values

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self.reload_if_changed()
            self._values[key] = value
            self._save()

    def update(self, values: dict[str, Any]) -> None:
        with self._lock:
            self.reload_if_changed()
            self._values.update(values)
            self._save()

    def delete(self, key: str) -> bool:
        with self._lock:
            self.reload_if_changed()
            if key not in self._values:
                return False
            del self._values[key]
            self._save()
            return True

    def all(self) -> dict[str, Any]:
        self.reload_if_changed()
        return dict(self._values)

    # Typed accessors

    @property
    def share_link(self) -> Optional[str]:
        return self.get(SHARE_LINK_KEY)

    def set_share_link(self, share_link: str) -> None:
        self.set(SHARE_LINK_KEY, share_link.strip())

    @property
    def mode(self) -> VPNMode:
        return _stored_mode(self.get(VPN_MODE_KEY))

    def set_mode(self, mode: VPNMode) -> None:
        self.set(VPN_MODE_KEY, VPNMode.parse(mode).value)

    def set_ports(self, socks_port: int, traffic_port: int) -> None:
        self.update({SOCKS_PORT_KEY: socks_port, TRAFFIC_PORT_KEY: traffic_port})

    def load_tunnel_preferences(self) -> TunnelPreferences:
        """
        Read everything a start needs.

        Absent keys raise ``MissingPreference``. Present but unusable values
        (an empty link, a port of the wrong type) are passed through so the
        configuration builder can report them precisely.
        """
        values = self.all()
        for key in (SHARE_LINK_KEY, SOCKS_PORT_KEY, TRAFFIC_PORT_KEY):
            if key not in values:
                raise MissingPreference(key)

        return TunnelPreferences(
            share_link=values[SHARE_LINK_KEY],
            socks_port=values[SOCKS_PORT_KEY],
            traffic_port=values[TRAFFIC_PORT_KEY],
            mode=_stored_mode(values.get(VPN_MODE_KEY)),
        )
