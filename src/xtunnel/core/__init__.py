"""
xtunnel core module.

Settings and logging shared by every component.
"""

from .config import (
    Settings,
    CoreSettings,
    Tun2SocksSettings,
    InterfaceSettings,
    LifecycleSettings,
    PingSettings,
    GeoSettings,
    LogSettings,
    ApiSettings,
    get_settings,
    get_project_root,
)
from .logging import setup_logging, get_logger

__all__ = [
    # Settings
    "Settings",
    "CoreSettings",
    "Tun2SocksSettings",
    "InterfaceSettings",
    "LifecycleSettings",
    "PingSettings",
    "GeoSettings",
    "LogSettings",
    "ApiSettings",
    "get_settings",
    "get_project_root",
    # Logging
    "setup_logging",
    "get_logger",
]
