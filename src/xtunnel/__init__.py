"""
xtunnel - Xray tunnel manager

Runs an Xray proxy core behind a virtual network interface:
- Share links converted to a full runtime configuration
- Global and split (NonGlobal) routing with optional geo-data
- Tunnel lifecycle with conflict detection and restart
- Local control API and CLI
"""

__version__ = "1.0.0"

from .builder import ConfigurationBuilder
from .errors import TunnelError
from .models.tunnel import TunnelStatus, VPNMode
from .orchestrator import ConflictGuard, TunnelOrchestrator
from .ports import PortAllocator
from .routing import RouteRulePolicy

__all__ = [
    "ConfigurationBuilder",
    "ConflictGuard",
    "PortAllocator",
    "RouteRulePolicy",
    "TunnelError",
    "TunnelOrchestrator",
    "TunnelStatus",
    "VPNMode",
]
