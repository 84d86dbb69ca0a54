"""
Frame data models.
"""

from .keys import Key, ICMP_SUBTYPES, ARP_SUBTYPES, key_for_option, parse_key
from .frame import (
    CaptureMetadata,
    RawFrame,
    EthernetFrame,
    IPv4Packet,
    ArpPacket,
    OpaqueNetwork,
    UnclassifiedNetwork,
    TcpSegment,
    UdpDatagram,
    IcmpMessage,
    IgmpMessage,
    UnclassifiedTransport,
    DecodedFrame,
)

__all__ = [
    'Key',
    'ICMP_SUBTYPES',
    'ARP_SUBTYPES',
    'key_for_option',
    'parse_key',
    'CaptureMetadata',
    'RawFrame',
    'EthernetFrame',
    'IPv4Packet',
    'ArpPacket',
    'OpaqueNetwork',
    'UnclassifiedNetwork',
    'TcpSegment',
    'UdpDatagram',
    'IcmpMessage',
    'IgmpMessage',
    'UnclassifiedTransport',
    'DecodedFrame',
]
