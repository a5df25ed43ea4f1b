"""
Tunnel API schemas for request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.tunnel import SessionSummary, TunnelStatus, VPNMode


class TunnelStatusResponse(BaseModel):
    """Response schema for tunnel status."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(..., description="Registered tunnel name")
    status: TunnelStatus = Field(..., description="Host-reported status")
    connected_at: Optional[datetime] = Field(default=None, description="When the tunnel connected")
    mode: VPNMode = Field(..., description="Persisted routing mode")
    socks_port: Optional[int] = Field(default=None, description="SOCKS inbound port")
    traffic_port: Optional[int] = Field(default=None, description="Metrics inbound port")
    share_link_set: bool = Field(default=False, description="A share link is stored")
    other_sessions: list[SessionSummary] = Field(
        default_factory=list,
        description="Other active tunnels on this host"
    )


class ModeUpdate(BaseModel):
    """Schema for changing the routing mode."""
    mode: VPNMode = Field(..., description="Global or NonGlobal")


class ShareLinkUpdate(BaseModel):
    """Schema for replacing the stored share link."""
    share_link: str = Field(..., min_length=1, description="Proxy share link")


class TrafficResponse(BaseModel):
    """SOCKS inbound byte counters."""
    available: bool = Field(..., description="Counters could be read")
    downlink: int = Field(default=0, ge=0)
    uplink: int = Field(default=0, ge=0)


class GeoAssetFile(BaseModel):
    name: str
    size: int = Field(..., ge=0)


class GeoAssetsResponse(BaseModel):
    """Contents of the geo-data asset directory."""
    present: bool
    files: list[GeoAssetFile] = Field(default_factory=list)
