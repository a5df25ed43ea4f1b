"""
Tunnel domain models with strong typing using Pydantic.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VPNMode(str, Enum):
    """Routing mode; persisted under the ``VPNMode`` preference key."""
    GLOBAL = "Global"
    NON_GLOBAL = "NonGlobal"

    @classmethod
    def parse(cls, value: Optional[str]) -> "VPNMode":
        """
        Lenient parse of a stored or user-typed mode.

        Unset values fall back to NON_GLOBAL.
        """
        if value is None or value == "":
            return cls.NON_GLOBAL
        if isinstance(value, cls):
            return value
        normalized = str(value).replace("-", "").replace("_", "").lower()
        for mode in cls:
            if mode.value.lower() == normalized:
                return mode
        raise ValueError(f"Unknown VPN mode: {value}")


class TunnelStatus(str, Enum):
    """Host-reported tunnel status."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    REASSERTING = "reasserting"
    INVALID = "invalid"

    @property
    def is_active(self) -> bool:
        """Whether a tunnel in this state is up or coming up; Reasserting counts as Connected."""
        return self in (
            TunnelStatus.CONNECTING,
            TunnelStatus.CONNECTED,
            TunnelStatus.REASSERTING,
        )


class TunnelSession(BaseModel):
    """Snapshot of this process's tunnel, derived from the host accessor."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(default="default", description="Registered tunnel name")
    status: TunnelStatus = Field(default=TunnelStatus.DISCONNECTED)
    connected_at: Optional[datetime] = Field(default=None, description="Set while connected")


class SessionSummary(BaseModel):
    """Another managed tunnel configuration known to the host."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    status: TunnelStatus
    pid: Optional[int] = None
    updated_at: Optional[datetime] = None


class TunnelStartOptions(BaseModel):
    """Options handed to the host when starting a tunnel."""

    socks_port: int = Field(..., ge=1, le=65535)
    config_path: Optional[Path] = None
    config_blob: Optional[bytes] = None

    @model_validator(mode="after")
    def exactly_one_config_source(self) -> "TunnelStartOptions":
        if (self.config_path is None) == (self.config_blob is None):
            raise ValueError("exactly one of config_path or config_blob is required")
        return self


class TrafficStats(BaseModel):
    """Byte counters of the SOCKS inbound."""
    downlink: int = Field(default=0, ge=0)
    uplink: int = Field(default=0, ge=0)
