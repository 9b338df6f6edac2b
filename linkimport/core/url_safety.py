"""Host/IP guards that keep link fetches off private and internal networks."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

_BLOCKED_HOSTNAMES = {
    "localhost",
    "0.0.0.0",
    "metadata",
    "metadata.google.internal",
}

_BLOCKED_HOST_SUFFIXES = (".localhost", ".local", ".internal", ".localdomain", ".home.arpa")

# Ranges ipaddress does not flag on every supported Python version, plus
# documentation/benchmark space that never hosts public content.
_EXTRA_BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "100.64.0.0/10",  # carrier-grade NAT; Alibaba metadata at 100.100.100.200
        "169.254.0.0/16",  # link-local; AWS/GCP/Azure metadata at 169.254.169.254
        "192.0.0.0/24",
        "192.0.2.0/24",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/3",  # multicast, reserved, broadcast
        "fc00::/7",  # unique local; AWS IPv6 metadata at fd00:ec2::254
        "fe80::/10",
        "ff00::/8",
        "2001:db8::/32",
    )
)


def is_blocked_hostname(hostname: str) -> bool:
    """Return True for hostnames that only ever name local or internal services."""
    host = str(hostname or "").strip().lower().rstrip(".")
    if not host:
        return True
    if host in _BLOCKED_HOSTNAMES:
        return True
    return host.endswith(_BLOCKED_HOST_SUFFIXES)


def parse_ip(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse an IP literal (brackets and IPv6 zone ids allowed), or None for hostnames."""
    raw = str(value or "").strip()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    raw = raw.split("%", 1)[0]
    try:
        return ipaddress.ip_address(raw)
    except ValueError:
        return None


def is_private_or_reserved_ip(value: str) -> bool:
    """Return True when value is an address a link fetch must never reach.

    Unparseable input fails closed.
    """
    ip = parse_ip(value)
    if ip is None:
        return True

    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ip.ipv4_mapped
        if mapped is not None:
            return is_private_or_reserved_ip(str(mapped))
        # 6to4 and Teredo tunnel to the IPv4 address they embed
        embedded = [ip.sixtofour] if ip.sixtofour is not None else []
        if ip.teredo is not None:
            embedded.extend(ip.teredo)
        if any(is_private_or_reserved_ip(str(addr)) for addr in embedded):
            return True

    if (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    ):
        return True

    return any(ip.version == net.version and ip in net for net in _EXTRA_BLOCKED_NETWORKS)


def validate_host(hostname: str) -> tuple[bool, str]:
    """Check a hostname or IP literal before any DNS lookup.

    Returns (True, "ok"), (False, "blocked_host") or (False, "blocked_ip").
    Hostnames that pass still need every resolved address run through
    validate_addresses().
    """
    if parse_ip(hostname) is not None:
        if is_private_or_reserved_ip(hostname):
            return False, "blocked_ip"
        return True, "ok"

    if is_blocked_hostname(hostname):
        return False, "blocked_host"

    return True, "ok"


def validate_addresses(addresses: Iterable[str]) -> tuple[bool, str | None]:
    """Require every resolved address to be public.

    Returns (True, None) or (False, first_offending_address). One public address
    among unsafe ones is not enough.
    """
    for address in addresses:
        if is_private_or_reserved_ip(address):
            return False, address
    return True, None
