"""
Proxy core runtime configuration models.

Field names are snake_case in Python and camelCase on the wire. Optional
fields left as ``None`` are omitted on serialization, so no null values can
reach the core.
"""

import json
from collections import Counter
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


PROXY_TAG = "proxy"
DIRECT_TAG = "direct"
BLOCK_TAG = "block"
SOCKS_INBOUND_TAG = "socks"
METRICS_INBOUND_TAG = "metricsIn"
METRICS_OUTBOUND_TAG = "metricsOut"

RESERVED_OUTBOUND_TAGS = frozenset({PROXY_TAG, DIRECT_TAG, BLOCK_TAG, METRICS_OUTBOUND_TAG})


class XrayModel(BaseModel):
    """Base for every config stanza."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Sniffing(XrayModel):
    enabled: bool = True
    dest_override: list[str] = Field(default_factory=lambda: ["http", "tls", "quic"])
    route_only: bool = False


class Inbound(XrayModel):
    """A local listener of the proxy core."""

    tag: str
    protocol: str
    listen: str
    port: int = Field(..., ge=1, le=65535)
    settings: dict[str, Any] = Field(default_factory=dict)
    sniffing: Optional[Sniffing] = None


class Outbound(XrayModel):
    """
    An egress path.

    Unknown keys produced by the share-link converter (``mux``,
    ``proxySettings`` and the like) are kept verbatim.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    protocol: str
    tag: Optional[str] = None
    settings: Optional[dict[str, Any]] = None
    stream_settings: Optional[dict[str, Any]] = None
    send_through: Optional[str] = None


class RouteRule(XrayModel):
    """A single routing rule; rules are evaluated in order, first match wins."""

    type: str = "field"
    inbound_tag: Optional[list[str]] = None
    domain: Optional[list[str]] = None
    ip: Optional[list[str]] = None
    port: Optional[str] = None
    outbound_tag: str


class RoutingPolicy(XrayModel):
    domain_strategy: str = "AsIs"
    rules: list[RouteRule] = Field(default_factory=list)


class DnsServer(XrayModel):
    address: str
    skip_fallback: Optional[bool] = None
    domains: Optional[list[str]] = None
    expect_ips: Optional[list[str]] = Field(default=None, alias="expectIPs")


class DnsPolicy(XrayModel):
    hosts: dict[str, str] = Field(default_factory=dict)
    servers: list[Union[DnsServer, str]] = Field(default_factory=list)


class SystemPolicy(XrayModel):
    stats_inbound_downlink: bool = True
    stats_inbound_uplink: bool = True
    stats_outbound_downlink: bool = True
    stats_outbound_uplink: bool = True


class Policy(XrayModel):
    system: SystemPolicy = Field(default_factory=SystemPolicy)


class Metrics(XrayModel):
    tag: str = METRICS_OUTBOUND_TAG


class RuntimeConfiguration(XrayModel):
    """
    Complete configuration document for one proxy core process.

    Exactly one ``proxy`` and one ``direct`` outbound must be present, at
    most one ``block``, and no two inbounds may share a port.
    """

    inbounds: list[Inbound]
    outbounds: list[Outbound]
    routing: Optional[RoutingPolicy] = None
    dns: Optional[DnsPolicy] = None
    metrics: Optional[Metrics] = None
    policy: Optional[Policy] = None
    stats: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def check_tags_and_ports(self) -> "RuntimeConfiguration":
        tags = Counter(o.tag for o in self.outbounds)
        if tags[PROXY_TAG] != 1:
            raise ValueError(f"expected exactly one '{PROXY_TAG}' outbound, got {tags[PROXY_TAG]}")
        if tags[DIRECT_TAG] != 1:
            raise ValueError(f"expected exactly one '{DIRECT_TAG}' outbound, got {tags[DIRECT_TAG]}")
        if tags[BLOCK_TAG] > 1:
            raise ValueError(f"expected at most one '{BLOCK_TAG}' outbound, got {tags[BLOCK_TAG]}")

        ports = Counter(i.port for i in self.inbounds)
        clashing = sorted(p for p, n in ports.items() if n > 1)
        if clashing:
            raise ValueError(f"inbound ports must be distinct, reused: {clashing}")
        return self

    def outbound(self, tag: str) -> Optional[Outbound]:
        """Return the outbound with ``tag``, if any."""
        return next((o for o in self.outbounds if o.tag == tag), None)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
