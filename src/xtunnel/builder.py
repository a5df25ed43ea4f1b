"""
Runtime configuration builder.

Turns a share link plus local preferences into the configuration document
the proxy core runs with: a SOCKS inbound for traffic, a loopback metrics
inbound for statistics, the upstream proxy outbound with local ``direct``
and ``block`` outbounds, and mode-dependent routing and DNS.
"""

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .core.config import CoreSettings
from .core.logging import get_logger
from .dns import build_dns_policy
from .errors import ConfigSerializationFailure, PortUnavailable, UpstreamParseFailure
from .geo_assets import GeoAssetStore
from .models.tunnel import VPNMode
from .models.xray import (
    BLOCK_TAG,
    DIRECT_TAG,
    METRICS_INBOUND_TAG,
    PROXY_TAG,
    RESERVED_OUTBOUND_TAGS,
    SOCKS_INBOUND_TAG,
    Inbound,
    Metrics,
    Outbound,
    Policy,
    RuntimeConfiguration,
    Sniffing,
)
from .preferences import TunnelPreferences
from .routing import RouteRulePolicy
from .share_link import BuiltinShareLinkConverter, ShareLinkConverter, parse_outbounds


logger = get_logger(__name__)


def _check_port(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PortUnavailable(f"{name} port is not set to a number: {value!r}")
    if not 1 <= value <= 65535:
        raise PortUnavailable(f"{name} port out of range: {value}")
    return value


class ConfigurationBuilder:
    """
    Builds ``RuntimeConfiguration`` documents.

    Building is synchronous and has no side effects besides one read of the
    geo-asset directory per build.
    """

    def __init__(
        self,
        converter: Optional[ShareLinkConverter] = None,
        geo_assets: Optional[GeoAssetStore] = None,
        settings: Optional[CoreSettings] = None,
        routing: Optional[RouteRulePolicy] = None,
    ):
        self.converter = converter or BuiltinShareLinkConverter()
        self.geo_assets = geo_assets
        self.settings = settings or CoreSettings()
        self.routing = routing or RouteRulePolicy(include_block=self.settings.include_block)

    def geo_assets_present(self) -> bool:
        return self.geo_assets is not None and self.geo_assets.present()

    def build(
        self,
        share_link: Optional[str],
        mode: VPNMode,
        socks_port: Any,
        metrics_port: Any,
    ) -> RuntimeConfiguration:
        """
        Build the full tunnel configuration.

        Raises:
            PortUnavailable: missing, invalid or clashing ports
            InvalidShareLink: link empty or rejected by the converter
            UpstreamParseFailure: converter output of unexpected shape
            ConfigSerializationFailure: assembled document fails validation
        """
        socks_port = _check_port("SOCKS", socks_port)
        metrics_port = _check_port("Metrics", metrics_port)
        if socks_port == metrics_port:
            raise PortUnavailable(f"SOCKS and metrics ports must differ (both {socks_port})")

        outbounds = self._outbounds(share_link)
        geo_present = self.geo_assets_present()

        try:
            config = RuntimeConfiguration(
                inbounds=[
                    self._socks_inbound(socks_port),
                    Inbound(
                        tag=METRICS_INBOUND_TAG,
                        protocol="dokodemo-door",
                        listen="127.0.0.1",
                        port=metrics_port,
                        settings={"address": "127.0.0.1"},
                    ),
                ],
                outbounds=outbounds,
                routing=self.routing.build(mode, geo_present),
                dns=build_dns_policy(geo_present),
                metrics=Metrics(),
                policy=Policy(),
                stats={},
            )
        except ValidationError as e:
            raise ConfigSerializationFailure(f"Configuration is inconsistent: {e}") from e

        logger.info(
            "Built runtime configuration",
            mode=mode.value,
            geo_assets=geo_present,
            outbounds=len(outbounds),
            rules=len(config.routing.rules),
        )
        return config

    def build_from_preferences(self, preferences: TunnelPreferences) -> RuntimeConfiguration:
        return self.build(
            preferences.share_link,
            preferences.mode,
            preferences.socks_port,
            preferences.traffic_port,
        )

    def build_ping(self, share_link: Optional[str], socks_port: Any) -> RuntimeConfiguration:
        """Reduced configuration for latency probes: SOCKS inbound and outbounds only."""
        socks_port = _check_port("SOCKS", socks_port)
        outbounds = self._outbounds(share_link)
        try:
            return RuntimeConfiguration(
                inbounds=[self._socks_inbound(socks_port)],
                outbounds=outbounds,
            )
        except ValidationError as e:
            raise ConfigSerializationFailure(f"Configuration is inconsistent: {e}") from e

    def check_share_link(self, share_link: Optional[str]) -> int:
        """Validate a link without building a configuration; returns its outbound count."""
        return len(parse_outbounds(self.converter, share_link))

    @staticmethod
    def serialize(config: RuntimeConfiguration) -> bytes:
        """Pretty-printed UTF-8 JSON."""
        try:
            return config.to_json().encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ConfigSerializationFailure(f"Could not serialize configuration: {e}") from e

    def _socks_inbound(self, port: int) -> Inbound:
        return Inbound(
            tag=SOCKS_INBOUND_TAG,
            protocol="socks",
            listen=self.settings.socks_listen,
            port=port,
            settings={"udp": True},
            sniffing=Sniffing(),
        )

    def _outbounds(self, share_link: Optional[str]) -> list[Outbound]:
        descriptors = parse_outbounds(self.converter, share_link)

        outbounds = []
        for index, descriptor in enumerate(descriptors):
            descriptor = dict(descriptor)
            if index == 0:
                descriptor["tag"] = PROXY_TAG
            elif not descriptor.get("tag") or descriptor["tag"] in RESERVED_OUTBOUND_TAGS:
                descriptor["tag"] = f"upstream-{index}"
            try:
                outbounds.append(Outbound.model_validate(descriptor))
            except ValidationError as e:
                raise UpstreamParseFailure(f"Outbound {index} is malformed: {e}") from e

        if self.settings.strip_send_through:
            outbounds[0].send_through = None

        outbounds.append(Outbound(protocol="freedom", tag=DIRECT_TAG))
        if self.settings.include_block:
            outbounds.append(Outbound(protocol="blackhole", tag=BLOCK_TAG))

        if self.settings.outbound_mark is not None:
            for outbound in outbounds:
                if outbound.protocol != "blackhole":
                    self._apply_mark(outbound, self.settings.outbound_mark)

        return outbounds

    @staticmethod
    def _apply_mark(outbound: Outbound, mark: int) -> None:
        stream = dict(outbound.stream_settings or {})
        sockopt = dict(stream.get("sockopt") or {})
        sockopt.setdefault("mark", mark)
        stream["sockopt"] = sockopt
        outbound.stream_settings = stream


def write_config(path: Path, blob: bytes) -> Path:
    """Atomically write a serialized configuration, owner-readable only."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(blob)
        if os.name != 'nt':
            os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except OSError as e:
        raise ConfigSerializationFailure(f"Could not write {path}: {e}") from e
    return path
