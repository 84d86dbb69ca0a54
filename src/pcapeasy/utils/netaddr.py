"""Network address helpers (text form, subnet membership, CIDR)."""
from __future__ import annotations

import ipaddress
from typing import Union

Address = Union[str, int, bytes, ipaddress.IPv4Address]


def to_address(value: Address) -> ipaddress.IPv4Address:
    if isinstance(value, ipaddress.IPv4Address):
        return value
    if isinstance(value, (bytes, bytearray)):
        return ipaddress.IPv4Address(bytes(value))
    return ipaddress.IPv4Address(value)


def to_text(raw_address: Address) -> str:
    """Dotted-quad text for an address given as int, packed bytes or text."""
    return str(to_address(raw_address))


def network_of(network: Address, netmask: Address) -> ipaddress.IPv4Network:
    net = int(to_address(network)) & int(to_address(netmask))
    return ipaddress.IPv4Network((net, str(to_address(netmask))))


def membership(candidate: Address, network: Address, netmask: Address) -> bool:
    """True if ``candidate`` lies inside ``network``/``netmask``."""
    mask = int(to_address(netmask))
    return (int(to_address(candidate)) & mask) == (int(to_address(network)) & mask)


def prefix_length(netmask: Address) -> int:
    return network_of("0.0.0.0", netmask).prefixlen


def cidr(network: Address, netmask: Address) -> str:
    """CIDR text, e.g. ``192.168.1.0/24``."""
    return str(network_of(network, netmask))
