"""
Routing rule policy.

Rules are evaluated by the proxy core in order and the first match wins,
so the catch-all rule must stay last.
"""

from .models.tunnel import VPNMode
from .models.xray import (
    BLOCK_TAG,
    DIRECT_TAG,
    METRICS_INBOUND_TAG,
    METRICS_OUTBOUND_TAG,
    PROXY_TAG,
    RouteRule,
    RoutingPolicy,
)


ADS_DOMAINS = ["geosite:category-ads-all"]
DIRECT_DOMAINS = ["geosite:private", "geosite:cn"]
DIRECT_IPS = ["geoip:private", "geoip:cn"]

# Regional public resolvers and anycast addresses that must bypass the proxy.
DIRECT_DNS_IPS = [
    "223.5.5.5",
    "223.6.6.6",
    "2400:3200::1",
    "2400:3200:baba::1",
    "119.29.29.29",
    "1.12.12.12",
    "120.53.53.53",
    "2402:4e00::",
    "2402:4e00:1::",
    "180.76.76.76",
    "2400:da00::6666",
    "114.114.114.114",
    "114.114.115.115",
    "114.114.114.119",
    "114.114.115.119",
    "114.114.114.110",
    "114.114.115.110",
    "180.184.1.1",
    "180.184.2.2",
    "101.226.4.6",
    "218.30.118.6",
    "123.125.81.6",
    "140.207.198.6",
    "1.2.4.8",
    "210.2.4.8",
    "52.80.66.66",
    "117.50.22.22",
    "2400:7fc0:849e:200::4",
    "2404:c2c0:85d8:901::4",
    "117.50.10.10",
    "52.80.52.52",
    "2400:7fc0:849e:200::8",
    "2404:c2c0:85d8:901::8",
    "117.50.60.30",
    "52.80.60.30",
]

ALL_PORTS = "0-65535"


class RouteRulePolicy:
    """
    Produces the ordered rule list for a routing mode.

    Global mode, or NonGlobal without geo-data assets, yields only the
    statistics rule: the core then sends everything to its first outbound,
    which is always ``proxy``.
    """

    def __init__(self, include_block: bool = True):
        self.include_block = include_block

    @staticmethod
    def metrics_rule() -> RouteRule:
        return RouteRule(
            inbound_tag=[METRICS_INBOUND_TAG],
            outbound_tag=METRICS_OUTBOUND_TAG,
        )

    def rules(self, mode: VPNMode, geo_assets_present: bool) -> list[RouteRule]:
        rules = [self.metrics_rule()]

        if mode != VPNMode.NON_GLOBAL or not geo_assets_present:
            return rules

        if self.include_block:
            rules.append(RouteRule(domain=list(ADS_DOMAINS), outbound_tag=BLOCK_TAG))
        rules.append(RouteRule(domain=list(DIRECT_DOMAINS), outbound_tag=DIRECT_TAG))
        rules.append(RouteRule(ip=list(DIRECT_IPS), outbound_tag=DIRECT_TAG))
        rules.append(RouteRule(ip=list(DIRECT_DNS_IPS), outbound_tag=DIRECT_TAG))
        rules.append(RouteRule(port=ALL_PORTS, outbound_tag=PROXY_TAG))
        return rules

    def build(self, mode: VPNMode, geo_assets_present: bool) -> RoutingPolicy:
        return RoutingPolicy(
            domain_strategy="AsIs",
            rules=self.rules(mode, geo_assets_present),
        )
