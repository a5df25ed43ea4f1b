"""
Domain models for xtunnel.
"""

from .tunnel import (
    SessionSummary,
    TrafficStats,
    TunnelSession,
    TunnelStartOptions,
    TunnelStatus,
    VPNMode,
)
from .xray import (
    DnsPolicy,
    DnsServer,
    Inbound,
    Metrics,
    Outbound,
    Policy,
    RouteRule,
    RoutingPolicy,
    RuntimeConfiguration,
    Sniffing,
    SystemPolicy,
)

__all__ = [
    "SessionSummary",
    "TrafficStats",
    "TunnelSession",
    "TunnelStartOptions",
    "TunnelStatus",
    "VPNMode",
    "DnsPolicy",
    "DnsServer",
    "Inbound",
    "Metrics",
    "Outbound",
    "Policy",
    "RouteRule",
    "RoutingPolicy",
    "RuntimeConfiguration",
    "Sniffing",
    "SystemPolicy",
]
