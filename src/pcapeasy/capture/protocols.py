"""
Per-layer protocol decoders.

Each ``decode_<layer>`` takes the bytes that start at that layer's header
and returns a frozen model node whose ``payload`` is the undecoded
remainder. A truncated or malformed mandatory header raises
``DecodeError``; values a decoder does not understand are carried as-is,
it is up to the frame decoder to decide what follows.
"""
from __future__ import annotations

import ipaddress
import struct
from typing import Optional

from ..exceptions import DecodeError
from ..models.frame import (
    EthernetFrame,
    IPv4Packet,
    ArpPacket,
    TcpSegment,
    UdpDatagram,
    IcmpMessage,
    IgmpMessage,
)

# Link type constants (libpcap DLT_* / LINKTYPE_*)
DLT_NULL = 0
DLT_EN10MB = 1
DLT_RAW = 12
DLT_RAW_ALT = 14
DLT_LOOP = 108
DLT_LINUX_SLL = 113
LINKTYPE_RAW = 101
LINKTYPE_IPV4 = 228
LINKTYPE_IPV6 = 229

# EtherTypes that wrap another EtherType
ETH_TYPE_VLAN = 0x8100
ETH_TYPE_QINQ = 0x88A8

ETH_HEADER_LEN = 14
IPV4_MIN_HEADER_LEN = 20
TCP_MIN_HEADER_LEN = 20
UDP_HEADER_LEN = 8
ICMP_HEADER_LEN = 4
IGMP_HEADER_LEN = 8
ARP_FIXED_LEN = 8

ZERO_MAC = "00:00:00:00:00:00"


def decode_ethernet(data: bytes, link_type: int = DLT_EN10MB) -> EthernetFrame:
    if len(data) < ETH_HEADER_LEN:
        raise DecodeError(
            f"Ethernet header needs {ETH_HEADER_LEN} bytes, got {len(data)}",
            layer="ethernet",
        )
    dst_mac = format_mac(data[0:6])
    src_mac = format_mac(data[6:12])
    ethertype = struct.unpack_from("!H", data, 12)[0]
    offset = ETH_HEADER_LEN

    # VLAN tags (single or double)
    vlan_ids = []
    for _ in range(2):
        if ethertype not in (ETH_TYPE_VLAN, ETH_TYPE_QINQ):
            break
        if len(data) < offset + 4:
            raise DecodeError("Truncated 802.1Q tag", layer="ethernet")
        tci, ethertype = struct.unpack_from("!HH", data, offset)
        vlan_ids.append(tci & 0x0FFF)
        offset += 4

    return EthernetFrame(
        dst_mac=dst_mac,
        src_mac=src_mac,
        ethertype=ethertype,
        payload=bytes(data[offset:]),
        vlan_ids=tuple(vlan_ids),
        link_type=link_type,
    )


def synthesize_ethernet(payload: bytes, ethertype: int, link_type: int) -> EthernetFrame:
    """Placeholder link header for media that are not Ethernet."""
    return EthernetFrame(
        dst_mac=ZERO_MAC,
        src_mac=ZERO_MAC,
        ethertype=ethertype,
        payload=bytes(payload),
        synthesized=True,
        link_type=link_type,
    )


def decode_ipv4(data: bytes) -> IPv4Packet:
    cap_len = len(data)
    if cap_len < IPV4_MIN_HEADER_LEN:
        raise DecodeError(
            f"IPv4 header needs {IPV4_MIN_HEADER_LEN} bytes, got {cap_len}",
            layer="ipv4",
        )
    vihl = data[0]
    version = vihl >> 4
    ihl = (vihl & 0x0F) * 4
    if version != 4:
        raise DecodeError(f"IPv4 header has version {version}", layer="ipv4")
    if ihl < IPV4_MIN_HEADER_LEN or ihl > cap_len:
        raise DecodeError(f"Invalid IPv4 header length {ihl}", layer="ipv4")

    tos, total_length, identification, flags_frag, ttl, protocol, checksum = \
        struct.unpack_from("!BHHHBBH", data, 1)

    # Trim link-layer padding, keep whatever was captured when truncated
    end = total_length if ihl <= total_length <= cap_len else cap_len
    return IPv4Packet(
        version=version,
        header_length=ihl,
        tos=tos,
        total_length=total_length,
        identification=identification,
        flags=flags_frag >> 13,
        fragment_offset=flags_frag & 0x1FFF,
        ttl=ttl,
        protocol=protocol,
        checksum=checksum,
        src_ip=format_ipv4(data[12:16]),
        dst_ip=format_ipv4(data[16:20]),
        options=bytes(data[IPV4_MIN_HEADER_LEN:ihl]),
        payload=bytes(data[ihl:end]),
    )


def decode_arp(data: bytes) -> ArpPacket:
    if len(data) < ARP_FIXED_LEN:
        raise DecodeError(f"ARP header needs {ARP_FIXED_LEN} bytes, got {len(data)}", layer="arp")
    htype, ptype, hlen, plen, opcode = struct.unpack_from("!HHBBH", data, 0)
    end = ARP_FIXED_LEN + 2 * (hlen + plen)
    if len(data) < end:
        raise DecodeError(f"ARP addresses need {end} bytes, got {len(data)}", layer="arp")

    offset = ARP_FIXED_LEN
    sha = data[offset:offset + hlen]
    offset += hlen
    spa = data[offset:offset + plen]
    offset += plen
    tha = data[offset:offset + hlen]
    offset += hlen
    tpa = data[offset:offset + plen]

    return ArpPacket(
        hardware_type=htype,
        protocol_type=ptype,
        hardware_size=hlen,
        protocol_size=plen,
        opcode=opcode,
        sender_mac=format_mac(sha),
        sender_ip=format_protocol_address(spa),
        target_mac=format_mac(tha),
        target_ip=format_protocol_address(tpa),
        payload=bytes(data[end:]),
    )


def decode_tcp(data: bytes) -> TcpSegment:
    cap_len = len(data)
    if cap_len < TCP_MIN_HEADER_LEN:
        raise DecodeError(f"TCP header needs {TCP_MIN_HEADER_LEN} bytes, got {cap_len}", layer="tcp")
    src_port, dst_port, seq, ack, offset_byte, flags, window, checksum, urgent = \
        struct.unpack_from("!HHIIBBHHH", data, 0)
    data_offset = (offset_byte >> 4) * 4
    if data_offset < TCP_MIN_HEADER_LEN or data_offset > cap_len:
        raise DecodeError(f"Invalid TCP data offset {data_offset}", layer="tcp")
    options = bytes(data[TCP_MIN_HEADER_LEN:data_offset])
    return TcpSegment(
        src_port=src_port,
        dst_port=dst_port,
        seq=seq,
        ack=ack,
        header_length=data_offset,
        flags=flags,
        window=window,
        checksum=checksum,
        urgent_pointer=urgent,
        options=options,
        mss=_parse_mss_option(options) if options else None,
        payload=bytes(data[data_offset:]),
    )


def decode_udp(data: bytes) -> UdpDatagram:
    cap_len = len(data)
    if cap_len < UDP_HEADER_LEN:
        raise DecodeError(f"UDP header needs {UDP_HEADER_LEN} bytes, got {cap_len}", layer="udp")
    src_port, dst_port, length, checksum = struct.unpack_from("!HHHH", data, 0)
    end = length if UDP_HEADER_LEN <= length <= cap_len else cap_len
    return UdpDatagram(
        src_port=src_port,
        dst_port=dst_port,
        length=length,
        checksum=checksum,
        payload=bytes(data[UDP_HEADER_LEN:end]),
    )


def decode_icmp(data: bytes) -> IcmpMessage:
    if len(data) < ICMP_HEADER_LEN:
        raise DecodeError(f"ICMP header needs {ICMP_HEADER_LEN} bytes, got {len(data)}", layer="icmp")
    icmp_type, code, checksum = struct.unpack_from("!BBH", data, 0)
    return IcmpMessage(
        type=icmp_type,
        code=code,
        checksum=checksum,
        payload=bytes(data[ICMP_HEADER_LEN:]),
    )


def decode_igmp(data: bytes) -> IgmpMessage:
    if len(data) < IGMP_HEADER_LEN:
        raise DecodeError(f"IGMP header needs {IGMP_HEADER_LEN} bytes, got {len(data)}", layer="igmp")
    igmp_type, max_resp, checksum = struct.unpack_from("!BBH", data, 0)
    return IgmpMessage(
        type=igmp_type,
        max_response_time=max_resp,
        checksum=checksum,
        group=format_ipv4(data[4:8]),
        payload=bytes(data[IGMP_HEADER_LEN:]),
    )


def format_ipv4(addr: bytes) -> str:
    return "{}.{}.{}.{}".format(addr[0], addr[1], addr[2], addr[3])


def format_mac(addr: bytes) -> str:
    return ":".join(f"{b:02x}" for b in addr)


def format_protocol_address(addr: bytes) -> str:
    if len(addr) == 4:
        return format_ipv4(addr)
    if len(addr) == 16:
        return str(ipaddress.IPv6Address(bytes(addr)))
    return addr.hex()


def _parse_mss_option(options: bytes) -> Optional[int]:
    idx = 0
    length = len(options)
    while idx < length:
        kind = options[idx]
        if kind == 0:
            break
        if kind == 1:
            idx += 1
            continue
        if idx + 1 >= length:
            break
        opt_len = options[idx + 1]
        if opt_len < 2 or idx + opt_len > length:
            break
        if kind == 2 and opt_len == 4:
            return struct.unpack_from("!H", options, idx + 2)[0]
        idx += opt_len
    return None
