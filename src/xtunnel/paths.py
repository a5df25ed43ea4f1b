"""
Centralized path management for xtunnel.

Every file the tunnel manager reads or writes lives under one home
directory, resolved from XTUNNEL_HOME or defaulting to ~/.xtunnel:

    config/config.yaml        settings
    config/preferences.json   persisted tunnel preferences
    assets/                   geo-data files handed to the proxy core
    run/                      generated runtime files (core + translator config)
    tunnels/                  host registry of managed tunnels
    logs/
"""

import os
from pathlib import Path
from typing import Optional

from .core.config import get_project_root


class XTunnelPaths:
    """
    Path manager rooted at the xtunnel home directory.

    Instances are cached per root so the same directory always maps to the
    same object; tests may build their own with an explicit root.
    """

    _instances: dict[Path, 'XTunnelPaths'] = {}

    CONFIG_DIR = "config"
    ASSETS_DIR = "assets"
    RUN_DIR = "run"
    TUNNELS_DIR = "tunnels"
    LOGS_DIR = "logs"

    CONFIG_FILE = "config.yaml"
    PREFERENCES_FILE = "preferences.json"
    RUNTIME_CONFIG_FILE = "config.json"
    PING_CONFIG_FILE = "ping.json"
    TUN2SOCKS_CONFIG_FILE = "tun2socks.yaml"

    def __new__(cls, root: Optional[Path] = None):
        resolved = Path(root or get_project_root()).expanduser().resolve()
        if resolved not in cls._instances:
            instance = super().__new__(cls)
            instance._root = resolved
            cls._instances[resolved] = instance
        return cls._instances[resolved]

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config_dir(self) -> Path:
        return self._root / self.CONFIG_DIR

    @property
    def assets_dir(self) -> Path:
        """Directory handed to the proxy core as its data directory."""
        return self._root / self.ASSETS_DIR

    @property
    def run_dir(self) -> Path:
        return self._root / self.RUN_DIR

    @property
    def tunnels_dir(self) -> Path:
        return self._root / self.TUNNELS_DIR

    @property
    def logs_dir(self) -> Path:
        return self._root / self.LOGS_DIR

    @property
    def config_file(self) -> Path:
        return self.config_dir / self.CONFIG_FILE

    @property
    def preferences_file(self) -> Path:
        return self.config_dir / self.PREFERENCES_FILE

    @property
    def runtime_config_file(self) -> Path:
        """Where the built configuration is written before each start."""
        return self.run_dir / self.RUNTIME_CONFIG_FILE

    @property
    def ping_config_file(self) -> Path:
        return self.run_dir / self.PING_CONFIG_FILE

    @property
    def tun2socks_config_file(self) -> Path:
        return self.run_dir / self.TUN2SOCKS_CONFIG_FILE

    def ensure_dirs(self) -> None:
        """
        Create the home directory layout.

        The run directory may hold share-link material rendered into the
        core configuration, so it is restricted to the owner on POSIX.
        """
        for directory in (
            self.config_dir,
            self.assets_dir,
            self.run_dir,
            self.tunnels_dir,
            self.logs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

        if os.name != 'nt':
            os.chmod(self.run_dir, 0o700)
            os.chmod(self.config_dir, 0o700)

    def __repr__(self) -> str:
        return f"XTunnelPaths(root={self._root})"


def get_paths(root: Optional[Path] = None) -> XTunnelPaths:
    """Get the path manager for ``root`` (default: the xtunnel home)."""
    return XTunnelPaths(root)
