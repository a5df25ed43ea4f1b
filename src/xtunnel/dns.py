"""DNS policy for the proxy core."""

import ipaddress

from .models.xray import DnsPolicy, DnsServer


FALLBACK_SERVERS = ["1.1.1.1", "8.8.8.8", "https://dns.google/dns-query"]
STATIC_HOSTS = {"dns.google": "8.8.8.8"}


def build_dns_policy(geo_assets_present: bool) -> DnsPolicy:
    """
    Build the resolver list.

    The regional resolver is only added when geo-data assets exist, since
    its ``geosite:``/``geoip:`` matchers need them.
    """
    servers: list = [
        DnsServer(
            address="1.1.1.1",
            skip_fallback=True,
            domains=["domain:googleapis.cn", "domain:gstatic.com"],
        ),
    ]
    if geo_assets_present:
        servers.append(DnsServer(
            address="223.5.5.5",
            skip_fallback=True,
            domains=["geosite:cn"],
            expect_ips=["geoip:cn"],
        ))
    servers.extend(FALLBACK_SERVERS)

    return DnsPolicy(hosts=dict(STATIC_HOSTS), servers=servers)


def resolver_addresses(policy: DnsPolicy) -> list[str]:
    """Plain IP fallback resolvers, in order and without duplicates."""
    addresses: list[str] = []
    for server in policy.servers:
        if not isinstance(server, str):
            continue
        try:
            ipaddress.ip_address(server)
        except ValueError:
            continue
        if server not in addresses:
            addresses.append(server)
    return addresses
