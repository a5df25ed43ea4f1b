"""
API endpoint routers.
"""

from . import geo, health, tunnel

__all__ = ["geo", "health", "tunnel"]
