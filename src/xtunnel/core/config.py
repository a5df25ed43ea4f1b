"""
xtunnel configuration using Pydantic Settings.

Settings are grouped by the component that consumes them. Each group reads
its own environment prefix:
- XTUNNEL_CORE_* (proxy core process and configuration shims)
- XTUNNEL_TUN2SOCKS_* (SOCKS-to-tun translator)
- XTUNNEL_TUN_* (virtual interface)
- XTUNNEL_LIFECYCLE_*, XTUNNEL_PING_*, XTUNNEL_GEO_*
- XTUNNEL_LOG_*, XTUNNEL_API_*
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_project_root() -> Path:
    """Get the xtunnel home directory."""
    if env_home := os.getenv("XTUNNEL_HOME"):
        return Path(env_home)
    return Path.home() / ".xtunnel"


class CoreSettings(BaseSettings):
    """Proxy core settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_CORE_",
        extra="ignore",
    )

    binary: str = Field(
        default="xray",
        description="Proxy core executable name or path"
    )
    max_memory_mb: int = Field(
        default=50,
        ge=8,
        description="Soft memory limit handed to the core (GOMEMLIMIT)"
    )
    startup_grace: float = Field(
        default=0.5,
        ge=0,
        description="Seconds the core must stay alive to count as started"
    )
    stop_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for the core to exit before killing it"
    )
    socks_listen: str = Field(
        default="0.0.0.0",
        description="Listen address of the SOCKS inbound"
    )
    include_block: bool = Field(
        default=True,
        description="Add the blackhole outbound and the ad-blocking rule"
    )
    strip_send_through: bool = Field(
        default=True,
        description="Remove sendThrough from the proxy outbound"
    )
    outbound_mark: Optional[int] = Field(
        default=255,
        ge=1,
        description="SO_MARK applied to proxy/direct egress (None disables)"
    )


class Tun2SocksSettings(BaseSettings):
    """SOCKS-to-tun translator settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_TUN2SOCKS_",
        extra="ignore",
    )

    binary: str = Field(default="hev-socks5-tunnel", description="Translator executable")
    mtu: int = Field(default=8500, ge=576, le=65535, description="Tunnel MTU")
    task_stack_size: int = Field(default=20480, ge=4096)
    connect_timeout: int = Field(default=5000, ge=1, description="Milliseconds")
    read_write_timeout: int = Field(default=60000, ge=1, description="Milliseconds")
    log_file: str = Field(default="stderr")
    log_level: str = Field(default="warn")
    limit_nofile: int = Field(default=65535, ge=1024)


class InterfaceSettings(BaseSettings):
    """Virtual network interface settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_TUN_",
        extra="ignore",
    )

    name: str = Field(default="xtun0", max_length=15, description="tun device name")
    remote_address: str = Field(default="fd00::1")
    ipv4_address: str = Field(default="198.18.0.1")
    ipv4_netmask: str = Field(default="255.255.255.0")
    ipv6_address: str = Field(default="fd6e:a81b:704f:1211::1")
    ipv6_prefix: int = Field(default=64, ge=1, le=128)
    ipv6_dns: list[str] = Field(
        default_factory=lambda: ["2606:4700:4700::1111", "2001:4860:4860::8888"],
        description="IPv6 resolvers announced on the interface"
    )
    route_table: int = Field(default=100, ge=1, le=252)
    manage_dns: bool = Field(default=True, description="Configure DNS via resolvectl")


class LifecycleSettings(BaseSettings):
    """Start/stop/restart orchestration settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_LIFECYCLE_",
        extra="ignore",
    )

    tunnel_name: str = Field(
        default="default",
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Name this tunnel registers under on the host"
    )
    restart_poll_interval: float = Field(default=0.5, gt=0)
    restart_max_polls: int = Field(
        default=40,
        ge=1,
        description="Upper bound on status polls while waiting for teardown"
    )


class PingSettings(BaseSettings):
    """Latency probe settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_PING_",
        extra="ignore",
    )

    url: str = Field(default="https://www.google.com/generate_204")
    timeout: float = Field(default=10.0, gt=0)


class GeoSettings(BaseSettings):
    """Geo-data asset download settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_GEO_",
        extra="ignore",
    )

    geoip_url: str = Field(
        default="https://github.com/Loyalsoldier/v2ray-rules-dat/releases/latest/download/geoip.dat"
    )
    geosite_url: str = Field(
        default="https://github.com/v2fly/domain-list-community/releases/latest/download/dlc.dat"
    )
    timeout: float = Field(default=120.0, gt=0)


class LogSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="console", description="Log format (json, console)")
    file: Optional[str] = Field(default=None, description="Log file path")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class ApiSettings(BaseSettings):
    """Control API settings."""

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_API_",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="API host address")
    port: int = Field(default=8787, ge=1, le=65535, description="API port")


_SECTIONS = {
    "core": CoreSettings,
    "tun2socks": Tun2SocksSettings,
    "interface": InterfaceSettings,
    "lifecycle": LifecycleSettings,
    "ping": PingSettings,
    "geo": GeoSettings,
    "log": LogSettings,
    "api": ApiSettings,
}


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from:
    1. Environment variables (XTUNNEL_* prefixes)
    2. YAML config file (<home>/config/config.yaml)
    3. Default values

    Values present in the YAML file override environment variables for the
    same key, since each section is built with explicit keyword arguments.
    """

    model_config = SettingsConfigDict(
        env_prefix="XTUNNEL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    core: CoreSettings = Field(default_factory=CoreSettings)
    tun2socks: Tun2SocksSettings = Field(default_factory=Tun2SocksSettings)
    interface: InterfaceSettings = Field(default_factory=InterfaceSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    ping: PingSettings = Field(default_factory=PingSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @classmethod
    def load_from_yaml(cls, config_file: Path) -> "Settings":
        """Load settings from a YAML file with environment fallbacks."""
        data = {}

        if config_file.exists():
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}

        sections = {
            name: section_cls(**data[name])
            for name, section_cls in _SECTIONS.items()
            if isinstance(data.get(name), dict)
        }
        return cls(**sections)

    def save_to_yaml(self, config_file: Path) -> None:
        """Save settings to a YAML file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = {name: getattr(self, name).model_dump() for name in _SECTIONS}

        with open(config_file, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def validate_all(self) -> list[str]:
        """
        Cross-field validation that single fields can't express.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.core.outbound_mark is not None and self.core.outbound_mark == self.interface.route_table:
            errors.append(
                f"Outbound mark {self.core.outbound_mark} equals route table id"
            )

        if self.lifecycle.restart_poll_interval * self.lifecycle.restart_max_polls > 120:
            errors.append("Restart wait bound exceeds two minutes")

        if self.log.format not in ("json", "console"):
            errors.append(f"Invalid log format: {self.log.format}")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    Reads <home>/config/config.yaml when present.
    """
    config_file = get_project_root() / "config" / "config.yaml"

    if config_file.exists():
        return Settings.load_from_yaml(config_file)

    return Settings()
