"""
Client for the local control API.

CLI commands that act on a running tunnel talk to the ``xtunnel up``
process through this client.
"""

import os
from typing import Any, Optional

import aiohttp

from .api.deps import API_KEY_ENV
from .core.logging import get_logger
from .errors import ControlApiError


logger = get_logger(__name__)


class ControlClient:
    """Thin aiohttp wrapper around the ``/api`` endpoints."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8787,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.base_url = f"http://{host}:{port}/api"
        self.api_key = api_key if api_key is not None else os.getenv(API_KEY_ENV)
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"X-API-Key": self.api_key}

    async def request(self, method: str, path: str, json: Any = None) -> Any:
        """
        Send one request and return the decoded JSON body.

        Raises:
            ControlApiError: API unreachable, or a non-2xx response
        """
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=json, headers=self._headers()) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
                    if response.status >= 400:
                        raise ControlApiError(_error_message(body, response.status), status=response.status)
                    return body
        except aiohttp.ClientConnectionError as e:
            logger.debug("Control API unreachable", url=url, error=str(e))
            raise ControlApiError(f"Control API not reachable at {self.base_url}: {e}") from e

    async def status(self) -> dict:
        return await self.request("GET", "/tunnel")

    async def start(self) -> dict:
        return await self.request("POST", "/tunnel/start")

    async def stop(self) -> dict:
        return await self.request("POST", "/tunnel/stop")

    async def restart(self) -> dict:
        return await self.request("POST", "/tunnel/restart")

    async def reassert(self) -> dict:
        return await self.request("POST", "/tunnel/reassert")

    async def set_mode(self, mode: str) -> dict:
        return await self.request("PUT", "/tunnel/mode", json={"mode": mode})

    async def set_share_link(self, share_link: str) -> dict:
        return await self.request("PUT", "/tunnel/link", json={"share_link": share_link})

    async def refresh_geo_assets(self) -> dict:
        return await self.request("POST", "/geo/download")

    async def clear_geo_assets(self) -> dict:
        return await self.request("DELETE", "/geo")


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        # TunnelError responses carry "message"; HTTPException ones carry "detail"
        message = body.get("message") or body.get("detail")
        if message:
            return str(message)
    return f"HTTP {status}"
