"""
Classification keys.

Every decoded frame resolves to exactly one most-specific key. Keys are
also the names used to register handlers: the callback option for a key
is its value with ``-`` replaced by ``_`` plus ``_callback``
(``icmp-echo-reply`` -> ``icmp_echo_reply_callback``).
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class Key(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"
    ICMP_ECHO_REPLY = "icmp-echo-reply"
    ICMP_UNREACH = "icmp-unreach"
    ICMP_SOURCE_QUENCH = "icmp-source-quench"
    ICMP_REDIRECT = "icmp-redirect"
    ICMP_ECHO = "icmp-echo"
    ICMP_ROUTER_ADVERT = "icmp-router-advert"
    ICMP_ROUTER_SOLICIT = "icmp-router-solicit"
    ICMP_TIME_EXCEEDED = "icmp-time-exceeded"
    ICMP_PARAM_PROBLEM = "icmp-param-problem"
    ICMP_TIMESTAMP = "icmp-timestamp"
    ICMP_TIMESTAMP_REPLY = "icmp-timestamp-reply"
    ICMP_INFO_REQUEST = "icmp-info-request"
    ICMP_INFO_REPLY = "icmp-info-reply"
    IGMP = "igmp"
    IPV4 = "ipv4"
    ARP = "arp"
    ARP_REPLY = "arp-reply"
    ARP_REQUEST = "arp-request"
    RARP_REPLY = "rarp-reply"
    RARP_REQUEST = "rarp-request"
    IPV6 = "ipv6"
    SNMP = "snmp"
    PPP = "ppp"
    APPLETALK = "appletalk"
    DEFAULT = "default"

    @property
    def option_name(self) -> str:
        """Configuration option that registers a callback for this key."""
        return self.value.replace("-", "_") + "_callback"

    def __str__(self) -> str:
        return self.value


# ICMP type byte -> subtype key (RFC 792 / RFC 950 / RFC 1256)
ICMP_SUBTYPES: Dict[int, Key] = {
    0: Key.ICMP_ECHO_REPLY,
    3: Key.ICMP_UNREACH,
    4: Key.ICMP_SOURCE_QUENCH,
    5: Key.ICMP_REDIRECT,
    8: Key.ICMP_ECHO,
    9: Key.ICMP_ROUTER_ADVERT,
    10: Key.ICMP_ROUTER_SOLICIT,
    11: Key.ICMP_TIME_EXCEEDED,
    12: Key.ICMP_PARAM_PROBLEM,
    13: Key.ICMP_TIMESTAMP,
    14: Key.ICMP_TIMESTAMP_REPLY,
    15: Key.ICMP_INFO_REQUEST,
    16: Key.ICMP_INFO_REPLY,
}

# ARP opcode -> subtype key (RFC 826 / RFC 903)
ARP_SUBTYPES: Dict[int, Key] = {
    1: Key.ARP_REQUEST,
    2: Key.ARP_REPLY,
    3: Key.RARP_REQUEST,
    4: Key.RARP_REPLY,
}

# EtherType constants
ETH_TYPE_IPV4 = 0x0800
ETH_TYPE_ARP = 0x0806
ETH_TYPE_RARP = 0x8035
ETH_TYPE_APPLETALK = 0x809B
ETH_TYPE_SNMP = 0x814C
ETH_TYPE_IPV6 = 0x86DD
ETH_TYPE_PPP = 0x880B

# Known network protocols that get a classification but no structured decode
OPAQUE_NETWORK_TYPES: Dict[int, Key] = {
    ETH_TYPE_IPV6: Key.IPV6,
    ETH_TYPE_SNMP: Key.SNMP,
    ETH_TYPE_PPP: Key.PPP,
    ETH_TYPE_APPLETALK: Key.APPLETALK,
}

# IP protocol numbers
IP_PROTO_ICMP = 1
IP_PROTO_IGMP = 2
IP_PROTO_TCP = 6
IP_PROTO_UDP = 17

_BY_OPTION: Dict[str, Key] = {key.option_name: key for key in Key}


def key_for_option(option: str) -> Optional[Key]:
    """Map a ``*_callback`` option name back to its key, or None."""
    return _BY_OPTION.get(option)


def parse_key(value) -> Key:
    """Accept a Key, its value (``"icmp-echo"``) or underscore form."""
    if isinstance(value, Key):
        return value
    text = str(value).strip().lower().replace("_", "-")
    return Key(text)
