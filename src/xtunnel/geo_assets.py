"""
Geo-data asset directory.

The proxy core resolves ``geosite:`` and ``geoip:`` matchers from
``geosite.dat`` and ``geoip.dat`` in its data directory. Routing and DNS
only reference them when the directory is non-empty.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

import aiohttp

from .core.config import GeoSettings
from .core.logging import get_logger
from .errors import AssetDownloadFailure


logger = get_logger(__name__)

GEOIP_FILE = "geoip.dat"
GEOSITE_FILE = "geosite.dat"


class GeoAssetStore:
    """Presence checks, download and cleanup for geo-data files."""

    def __init__(self, assets_dir: Path, settings: Optional[GeoSettings] = None):
        self.assets_dir = assets_dir
        self.settings = settings or GeoSettings()

    def present(self) -> bool:
        """True when the asset directory holds at least one file."""
        return bool(self.list_files())

    def list_files(self) -> list[Path]:
        if not self.assets_dir.is_dir():
            return []
        return sorted(
            p for p in self.assets_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def clear(self) -> int:
        """Remove every asset file; returns the number removed."""
        removed = 0
        for path in self.list_files():
            path.unlink()
            removed += 1
        logger.info("Cleared geo assets", removed=removed, directory=str(self.assets_dir))
        return removed

    async def download(self, session: Optional[aiohttp.ClientSession] = None) -> list[Path]:
        """
        Download geoip and geosite files.

        Each file is written to a temporary name and moved into place, so a
        failed download never leaves a truncated asset the core would load.

        Raises:
            AssetDownloadFailure: on HTTP or filesystem errors
        """
        self.assets_dir.mkdir(parents=True, exist_ok=True)
        targets = [
            (self.settings.geoip_url, self.assets_dir / GEOIP_FILE),
            (self.settings.geosite_url, self.assets_dir / GEOSITE_FILE),
        ]

        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout)
            )

        try:
            saved = []
            for url, target in targets:
                saved.append(await self._fetch(session, url, target))
            return saved
        finally:
            if owns_session:
                await session.close()

    async def _fetch(self, session: aiohttp.ClientSession, url: str, target: Path) -> Path:
        logger.info("Downloading geo asset", url=url, target=target.name)
        fd, tmp_name = tempfile.mkstemp(dir=self.assets_dir, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise AssetDownloadFailure(
                            f"Download of {target.name} failed: HTTP {response.status}"
                        )
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        f.write(chunk)
            os.replace(tmp_name, target)
        except aiohttp.ClientError as e:
            raise AssetDownloadFailure(f"Download of {target.name} failed: {e}") from e
        except OSError as e:
            raise AssetDownloadFailure(f"Could not write {target.name}: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info("Saved geo asset", target=str(target), size=target.stat().st_size)
        return target
