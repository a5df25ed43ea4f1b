"""
Command modules for xtunnel CLI.

Split into logical groupings:
- tunnel: up/status/stop/restart/reassert
- prefs: link subcommands, mode and ports
- geo: geo asset subcommands
- utils: utility commands (init, config, ping, traffic, info)
"""

from .tunnel import register_tunnel_commands
from .prefs import register_pref_commands
from .geo import register_geo_commands
from .utils import register_util_commands

__all__ = [
    "register_tunnel_commands",
    "register_pref_commands",
    "register_geo_commands",
    "register_util_commands",
]
