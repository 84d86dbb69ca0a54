"""
Dispatch router.

Each decoded frame is offered to the registry along a fixed chain of
keys, most specific first, and exactly one handler (or none) runs:

    IPv4:  tcp | udp | icmp-<subtype>, icmp | igmp   ->  ipv4  ->  default
    ARP:   arp-<subtype> / rarp-<subtype>             ->  arp   ->  default
    IPv6, SNMP, PPP, AppleTalk:  own key                        ->  default
    anything else:                                                  default

The handler receives the session, the link node, every decoded node down
to the matched one, and the capture metadata:

    transport keys   handler(session, ether, ip, transport, metadata)
    ipv4             handler(session, ether, ip, metadata)
    arp*, ipv6, ...  handler(session, ether, network, metadata)
    default          handler(session, ether, metadata)
"""
from __future__ import annotations

from typing import Any, Optional, Tuple

from ..models.frame import (
    ArpPacket,
    DecodedFrame,
    IPv4Packet,
    IcmpMessage,
    IgmpMessage,
    OpaqueNetwork,
    TcpSegment,
    UdpDatagram,
)
from ..models.keys import Key, ICMP_SUBTYPES
from .registry import HandlerRegistry

TRANSPORT_KEYS = frozenset([Key.TCP, Key.UDP, Key.ICMP, Key.IGMP, *ICMP_SUBTYPES.values()])


def priority_chain(frame: DecodedFrame) -> Tuple[Key, ...]:
    """Keys to try for ``frame``, most specific first, ending with DEFAULT."""
    chain = []
    net = frame.network
    if isinstance(net, IPv4Packet):
        tr = frame.transport
        if isinstance(tr, TcpSegment):
            chain.append(Key.TCP)
        elif isinstance(tr, UdpDatagram):
            chain.append(Key.UDP)
        elif isinstance(tr, IcmpMessage):
            if tr.subtype is not None:
                chain.append(tr.subtype)
            chain.append(Key.ICMP)
        elif isinstance(tr, IgmpMessage):
            chain.append(Key.IGMP)
        chain.append(Key.IPV4)
    elif isinstance(net, ArpPacket):
        if net.subtype is not None:
            chain.append(net.subtype)
        chain.append(Key.ARP)
    elif isinstance(net, OpaqueNetwork):
        chain.append(net.key)
    chain.append(Key.DEFAULT)
    return tuple(chain)


def route(frame: DecodedFrame, registry: HandlerRegistry) -> Optional[Key]:
    """First key in the chain with a registered handler, or None."""
    for key in priority_chain(frame):
        if key in registry:
            return key
    return None


def handler_args(frame: DecodedFrame, key: Key, session: Any = None) -> Tuple[Any, ...]:
    if key == Key.DEFAULT:
        return (session, frame.link, frame.metadata)
    if key == Key.IPV4:
        return (session, frame.link, frame.network, frame.metadata)
    if key in TRANSPORT_KEYS:
        return (session, frame.link, frame.network, frame.transport, frame.metadata)
    return (session, frame.link, frame.network, frame.metadata)


def dispatch(frame: DecodedFrame, registry: HandlerRegistry, session: Any = None) -> bool:
    """Run the single most specific handler for ``frame``.

    Returns True if a non-default handler ran.
    """
    key = route(frame, registry)
    if key is None:
        return False
    handler = registry.resolve(key)
    handler(*handler_args(frame, key, session))
    return key != Key.DEFAULT
