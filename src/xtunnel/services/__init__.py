"""
Service layer for xtunnel.
"""

from .tunnel_service import TunnelService

__all__ = ["TunnelService"]
