"""
Frame decoder.

Chains the per-layer decoders in ``protocols``: link layer first (real
Ethernet or a synthesized placeholder), then the network layer selected
by the EtherType, then, under IPv4 only, the transport layer selected by
the protocol field. An unrecognised but well-formed protocol value ends
the chain at that layer. A malformed link or network header raises
``DecodeError``; a malformed transport header under a valid IPv4 header
ends the chain at IPv4 instead, so the frame still reaches the ``ipv4``
or ``default`` handler.
"""
from __future__ import annotations

import logging
import struct
from typing import Iterable, Iterator, Optional, Tuple

from ..exceptions import DecodeError
from ..models.frame import (
    CaptureMetadata,
    DecodedFrame,
    EthernetFrame,
    IPv4Packet,
    OpaqueNetwork,
    RawFrame,
    UnclassifiedNetwork,
    UnclassifiedTransport,
)
from ..models.keys import (
    Key,
    ETH_TYPE_ARP,
    ETH_TYPE_IPV4,
    ETH_TYPE_IPV6,
    ETH_TYPE_RARP,
    IP_PROTO_ICMP,
    IP_PROTO_IGMP,
    IP_PROTO_TCP,
    IP_PROTO_UDP,
    OPAQUE_NETWORK_TYPES,
)
from .protocols import (
    DLT_EN10MB,
    DLT_LINUX_SLL,
    DLT_LOOP,
    DLT_NULL,
    DLT_RAW,
    DLT_RAW_ALT,
    LINKTYPE_IPV4,
    LINKTYPE_IPV6,
    LINKTYPE_RAW,
    decode_arp,
    decode_ethernet,
    decode_icmp,
    decode_igmp,
    decode_ipv4,
    decode_tcp,
    decode_udp,
    synthesize_ethernet,
)

logger = logging.getLogger(__name__)

_RAW_IP_LINK_TYPES = (DLT_RAW, DLT_RAW_ALT, LINKTYPE_RAW, LINKTYPE_IPV4, LINKTYPE_IPV6)

# BSD loopback address families: AF_INET, then the AF_INET6 values used by
# NetBSD/OpenBSD (24), FreeBSD (28) and Darwin (30)
_AF_INET = 2
_AF_INET6 = (24, 28, 30)

SLL_HEADER_LEN = 16

_TRANSPORT_DECODERS = {
    IP_PROTO_TCP: (decode_tcp, Key.TCP),
    IP_PROTO_UDP: (decode_udp, Key.UDP),
    IP_PROTO_ICMP: (decode_icmp, Key.ICMP),
    IP_PROTO_IGMP: (decode_igmp, Key.IGMP),
}


def decode_link(data: bytes, link_type: int) -> EthernetFrame:
    """Decode or synthesize the link-layer node for ``link_type``."""
    if link_type == DLT_EN10MB:
        return decode_ethernet(data, link_type)

    if link_type in _RAW_IP_LINK_TYPES:
        return synthesize_ethernet(data, _ethertype_for_ip_version(data), link_type)

    if link_type in (DLT_NULL, DLT_LOOP):
        if len(data) < 4:
            raise DecodeError(f"Loopback header needs 4 bytes, got {len(data)}", layer="loopback")
        if link_type == DLT_LOOP:
            family = struct.unpack_from(">I", data, 0)[0]
        else:
            # DLT_NULL is in the capturing host's byte order
            family_le = struct.unpack_from("<I", data, 0)[0]
            family_be = struct.unpack_from(">I", data, 0)[0]
            family = family_le if family_le == _AF_INET or family_le in _AF_INET6 else family_be
        if family == _AF_INET:
            ethertype = ETH_TYPE_IPV4
        elif family in _AF_INET6:
            ethertype = ETH_TYPE_IPV6
        else:
            ethertype = 0
        return synthesize_ethernet(data[4:], ethertype, link_type)

    if link_type == DLT_LINUX_SLL:
        if len(data) < SLL_HEADER_LEN:
            raise DecodeError(f"SLL header needs {SLL_HEADER_LEN} bytes, got {len(data)}", layer="sll")
        ethertype = struct.unpack_from("!H", data, 14)[0]
        return synthesize_ethernet(data[SLL_HEADER_LEN:], ethertype, link_type)

    logger.debug("No link decoder for link type %d, wrapping frame as-is", link_type)
    return synthesize_ethernet(data, 0, link_type)


def _ethertype_for_ip_version(data: bytes) -> int:
    if not data:
        return 0
    version = data[0] >> 4
    if version == 4:
        return ETH_TYPE_IPV4
    if version == 6:
        return ETH_TYPE_IPV6
    return 0


def decode_frame(data: bytes, link_type: int = DLT_EN10MB,
                 metadata: Optional[CaptureMetadata] = None) -> DecodedFrame:
    """Decode raw frame bytes into a DecodedFrame."""
    data = bytes(data or b"")
    link = decode_link(data, link_type)
    ethertype = link.ethertype
    payload = link.payload

    if ethertype == ETH_TYPE_IPV4:
        try:
            ip = decode_ipv4(payload)
        except DecodeError as e:
            e.partial = DecodedFrame(link=link, metadata=metadata)
            raise
        transport, key = _decode_transport(ip)
        return DecodedFrame(link=link, key=key, network=ip, transport=transport, metadata=metadata)

    if ethertype in (ETH_TYPE_ARP, ETH_TYPE_RARP):
        try:
            arp = decode_arp(payload)
        except DecodeError as e:
            e.partial = DecodedFrame(link=link, metadata=metadata)
            raise
        return DecodedFrame(link=link, key=arp.subtype or Key.ARP, network=arp, metadata=metadata)

    opaque_key = OPAQUE_NETWORK_TYPES.get(ethertype)
    if opaque_key is not None:
        network = OpaqueNetwork(key=opaque_key, ethertype=ethertype, payload=payload)
        return DecodedFrame(link=link, key=opaque_key, network=network, metadata=metadata)

    return DecodedFrame(
        link=link,
        key=Key.DEFAULT,
        network=UnclassifiedNetwork(ethertype=ethertype, payload=payload),
        metadata=metadata,
    )


def _decode_transport(ip: IPv4Packet) -> Tuple[object, Key]:
    # Only the first fragment carries the transport header
    entry = _TRANSPORT_DECODERS.get(ip.protocol)
    if entry is None or ip.fragment_offset != 0:
        return UnclassifiedTransport(protocol=ip.protocol, payload=ip.payload), Key.IPV4

    decoder, key = entry
    try:
        transport = decoder(ip.payload)
    except DecodeError as e:
        logger.debug("%s header not decoded, chain stops at IPv4: %s", e.layer, e)
        return UnclassifiedTransport(protocol=ip.protocol, payload=ip.payload), Key.IPV4
    if key == Key.ICMP:
        key = transport.subtype or Key.ICMP
    return transport, key


class FrameDecoder:
    """Thin wrapper for decoding frames."""

    def decode(self, data: bytes, link_type: int = DLT_EN10MB,
               metadata: Optional[CaptureMetadata] = None) -> DecodedFrame:
        return decode_frame(data, link_type, metadata)

    def decode_raw(self, frame: RawFrame) -> DecodedFrame:
        return decode_frame(frame.data, frame.link_type, frame.metadata)

    def decode_stream(self, frames: Iterable[RawFrame]) -> Iterator[DecodedFrame]:
        for frame in frames:
            yield self.decode_raw(frame)
