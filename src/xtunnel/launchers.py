"""
Launch primitives for the external programs a tunnel runs on.

The proxy core (Xray) and the SOCKS-to-tun translator
(hev-socks5-tunnel) are opaque executables: they are configured through
files, started as child processes and stopped with SIGTERM, escalating to
SIGKILL when they do not exit in time.
"""

import asyncio
import os
import shutil
import subprocess
from pathlib import Path
from typing import IO, Any, Optional

import yaml

from .core.config import CoreSettings, Tun2SocksSettings
from .core.logging import get_logger
from .errors import CoreLaunchFailure, TunnelError


logger = get_logger(__name__)


def resolve_binary(binary: str) -> Optional[str]:
    """Find an executable by name on PATH, or accept an explicit path."""
    if os.sep in binary:
        return binary if os.access(binary, os.X_OK) else None
    return shutil.which(binary)


def _tail(path: Optional[Path], lines: int = 5) -> str:
    if path is None or not path.exists():
        return ""
    try:
        return "\n".join(path.read_text(errors="replace").splitlines()[-lines:])
    except OSError:
        return ""


class _ChildProcess:
    """Shared Popen handling for both launchers."""

    name = "process"

    def __init__(self, stop_timeout: float = 5.0, log_path: Optional[Path] = None):
        self.stop_timeout = stop_timeout
        self.log_path = log_path
        self._process: Optional[subprocess.Popen] = None
        self._log_handle: Optional[IO[Any]] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def _spawn(self, argv: list[str], env: Optional[dict[str, str]] = None) -> subprocess.Popen:
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_handle = open(self.log_path, "ab")
            output: Any = self._log_handle
        else:
            output = subprocess.DEVNULL

        self._process = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )
        logger.info(f"Started {self.name}", pid=self._process.pid, argv=argv)
        return self._process

    async def _terminate(self) -> Optional[int]:
        process = self._process
        if process is None:
            return None

        if process.poll() is None:
            process.terminate()
            try:
                await asyncio.to_thread(process.wait, self.stop_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"{self.name} ignored SIGTERM, killing", pid=process.pid)
                process.kill()
                await asyncio.to_thread(process.wait)

        self._process = None
        if self._log_handle is not None:
            self._log_handle.close()
            self._log_handle = None

        logger.info(f"Stopped {self.name}", pid=process.pid, returncode=process.returncode)
        return process.returncode


class XrayCore(_ChildProcess):
    """The proxy core process."""

    name = "proxy core"

    def __init__(self, settings: Optional[CoreSettings] = None, log_path: Optional[Path] = None):
        self.settings = settings or CoreSettings()
        super().__init__(stop_timeout=self.settings.stop_timeout, log_path=log_path)

    def _binary(self) -> str:
        binary = resolve_binary(self.settings.binary)
        if binary is None:
            raise CoreLaunchFailure(f"Proxy core not found: {self.settings.binary}")
        return binary

    async def start(self, data_dir: Path, config_path: Path) -> None:
        """
        Run the core with ``config_path``, reading geo assets from ``data_dir``.

        The core counts as started once it survives the startup grace
        period; configuration errors make it exit before that.

        Raises:
            CoreLaunchFailure: binary missing, spawn failed, or early exit
        """
        if self.running:
            raise CoreLaunchFailure("Proxy core is already running")

        env = dict(os.environ)
        env["XRAY_LOCATION_ASSET"] = str(data_dir)
        env["GOMEMLIMIT"] = f"{self.settings.max_memory_mb}MiB"

        try:
            process = self._spawn([self._binary(), "run", "-c", str(config_path)], env=env)
        except OSError as e:
            raise CoreLaunchFailure(f"Could not start proxy core: {e}") from e

        await asyncio.sleep(self.settings.startup_grace)
        if process.poll() is not None:
            code = process.returncode
            await self._terminate()
            detail = _tail(self.log_path)
            raise CoreLaunchFailure(
                f"Proxy core exited during startup (code {code})" + (f": {detail}" if detail else "")
            )

    async def stop(self) -> None:
        await self._terminate()

    def version(self) -> Optional[str]:
        """First line of ``xray version``, or None when unavailable."""
        binary = resolve_binary(self.settings.binary)
        if binary is None:
            return None
        try:
            result = subprocess.run(
                [binary, "version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not query proxy core version", error=str(e))
            return None
        first_line = result.stdout.strip().splitlines()[:1]
        return first_line[0] if first_line else None


class Tun2Socks(_ChildProcess):
    """The SOCKS-to-tun translator."""

    name = "tun2socks"

    def __init__(
        self,
        config_path: Path,
        settings: Optional[Tun2SocksSettings] = None,
        log_path: Optional[Path] = None,
    ):
        super().__init__(log_path=log_path)
        self.config_path = config_path
        self.settings = settings or Tun2SocksSettings()
        self._completion: Optional[asyncio.Future] = None
        self._watcher: Optional[asyncio.Task] = None
        self._quitting = False

    def render_config(self, socks_port: int, tun_name: str) -> dict[str, Any]:
        s = self.settings
        return {
            "tunnel": {
                "name": tun_name,
                "mtu": s.mtu,
            },
            "socks5": {
                "port": socks_port,
                "address": "127.0.0.1",
                "udp": "udp",
            },
            "misc": {
                "task-stack-size": s.task_stack_size,
                "connect-timeout": s.connect_timeout,
                "read-write-timeout": s.read_write_timeout,
                "log-file": s.log_file,
                "log-level": s.log_level,
                "limit-nofile": s.limit_nofile,
            },
        }

    def write_config(self, socks_port: int, tun_name: str) -> Path:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.safe_dump(self.render_config(socks_port, tun_name), f, default_flow_style=False, sort_keys=False)
        return self.config_path

    async def start(self, socks_port: int, tun_name: str) -> asyncio.Future:
        """
        Start translating tun packets to the SOCKS inbound.

        Returns a future resolved exactly once with the translator's exit
        code (0 means a clean shutdown).
        """
        if self.running:
            raise TunnelError("tun2socks is already running")

        binary = resolve_binary(self.settings.binary)
        if binary is None:
            raise TunnelError(f"tun2socks not found: {self.settings.binary}")

        self.write_config(socks_port, tun_name)
        try:
            process = self._spawn([binary, str(self.config_path)])
        except OSError as e:
            raise TunnelError(f"Could not start tun2socks: {e}") from e

        self._quitting = False
        loop = asyncio.get_running_loop()
        self._completion = loop.create_future()
        self._watcher = asyncio.create_task(self._watch(process, self._completion))
        return self._completion

    @property
    def quitting(self) -> bool:
        """Whether the current process was asked to exit by quit()."""
        return self._quitting

    async def _watch(self, process: subprocess.Popen, completion: asyncio.Future) -> None:
        code = await asyncio.to_thread(process.wait)
        if code == 0:
            logger.info("tun2socks finished", code=code)
        elif code < 0 and self._quitting:
            logger.info("tun2socks stopped", signal=-code)
        else:
            logger.warning("tun2socks exited with error", code=code)
        if not completion.done():
            completion.set_result(code)

    async def quit(self) -> None:
        self._quitting = True
        await self._terminate()
        if self._watcher is not None:
            await self._watcher
            self._watcher = None
