"""Shared fixtures and fakes for the xtunnel test suite."""

import asyncio
from typing import Any, Optional

import pytest

from xtunnel.models.tunnel import SessionSummary, TunnelStartOptions, TunnelStatus
from xtunnel.paths import XTunnelPaths


VLESS_LINK = (
    "vless://0b6a5d1e-4c1f-4f7e-9f53-2f1c1f6f7a11@edge.example.com:443"
    "?encryption=none&security=tls&sni=edge.example.com&type=ws&host=edge.example.com&path=%2Fws"
    "#edge"
)


class StaticConverter:
    """Converter returning a fixed envelope (or raising a fixed error)."""

    def __init__(self, envelope: Any = None, error: Optional[Exception] = None):
        self.envelope = envelope
        self.error = error
        self.calls: list[str] = []

    def convert(self, share_link: str) -> Any:
        self.calls.append(share_link)
        if self.error is not None:
            raise self.error
        return self.envelope


def ok_envelope(*outbounds: dict) -> dict:
    return {"success": True, "data": {"outbounds": list(outbounds)}}


class FakeHost:
    """In-memory host tunnel that records every call it receives."""

    def __init__(self, stop_delay: float = 0.01, start_error: Optional[Exception] = None):
        self._status = TunnelStatus.DISCONNECTED
        self.connected_at = None
        self.stop_delay = stop_delay
        self.start_error = start_error
        self.other_sessions: list[SessionSummary] = []
        self.calls: list[str] = []
        self.start_options: list[TunnelStartOptions] = []
        self._callbacks = []

    @property
    def status(self) -> TunnelStatus:
        return self._status

    def subscribe(self, callback):
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback)

    async def _set(self, status: TunnelStatus) -> None:
        self._status = status
        for callback in list(self._callbacks):
            await callback(status)

    async def register(self) -> None:
        self.calls.append("register")
        if self._status == TunnelStatus.INVALID:
            await self._set(TunnelStatus.DISCONNECTED)

    async def start_tunnel(self, options: TunnelStartOptions) -> None:
        self.calls.append("start")
        self.start_options.append(options)
        await self._set(TunnelStatus.CONNECTING)
        if self.start_error is not None:
            await self._set(TunnelStatus.DISCONNECTED)
            raise self.start_error
        await self._set(TunnelStatus.CONNECTED)

    async def stop_tunnel(self) -> None:
        self.calls.append("stop")
        if self._status == TunnelStatus.DISCONNECTED:
            return
        await self._set(TunnelStatus.DISCONNECTING)

        async def finish():
            await asyncio.sleep(self.stop_delay)
            await self._set(TunnelStatus.DISCONNECTED)

        asyncio.get_running_loop().create_task(finish())

    async def reassert(self) -> None:
        self.calls.append("reassert")

    def list_other_active_sessions(self) -> list[SessionSummary]:
        return list(self.other_sessions)


@pytest.fixture
def paths(tmp_path):
    """Isolated xtunnel home."""
    paths = XTunnelPaths(tmp_path / "home")
    paths.ensure_dirs()
    return paths


@pytest.fixture
def vless_link():
    return VLESS_LINK
