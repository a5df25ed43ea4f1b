"""
Local port allocation for the SOCKS and metrics inbounds.
"""

import socket
from contextlib import ExitStack
from typing import TYPE_CHECKING

from .core.logging import get_logger

if TYPE_CHECKING:
    from .preferences import PreferenceStore


logger = get_logger(__name__)

DEFAULT_SOCKS_PORT = 10808
DEFAULT_TRAFFIC_PORT = 10809


class PortAllocator:
    """
    Picks free loopback TCP ports.

    All sockets are held open until every port is chosen, so one call
    never returns the same port twice.
    """

    def __init__(self, host: str = "127.0.0.1"):
        self.host = host

    def free_ports(self, count: int = 2) -> list[int]:
        try:
            with ExitStack() as stack:
                ports = []
                for _ in range(count):
                    sock = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
                    sock.bind((self.host, 0))
                    ports.append(sock.getsockname()[1])
                return ports
        except OSError as e:
            fallback = self.default_ports(count)
            logger.warning("Could not allocate free ports, using defaults", error=str(e), ports=fallback)
            return fallback

    @staticmethod
    def default_ports(count: int = 2) -> list[int]:
        return [DEFAULT_SOCKS_PORT + i for i in range(count)]

    def allocate_and_store(self, preferences: "PreferenceStore") -> tuple[int, int]:
        """Allocate SOCKS and traffic ports and persist them."""
        socks_port, traffic_port = self.free_ports(2)
        preferences.set_ports(socks_port, traffic_port)
        logger.info("Allocated ports", socks_port=socks_port, traffic_port=traffic_port)
        return socks_port, traffic_port
