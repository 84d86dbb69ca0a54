# Frame data model
"""
Frame data models for pcapeasy.

THESE MODELS ARE IMMUTABLE. A decoded frame is a chain of layer nodes:
the link layer is always present (real or synthesized), every deeper
node exists only if the layer above it decoded and named a known
next protocol.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union
import json

from .keys import Key, ICMP_SUBTYPES, ARP_SUBTYPES


@dataclass(frozen=True)
class CaptureMetadata:
    """
    Per-frame capture header, as handed over by the capture engine.
    """
    timestamp_sec: int
    """Whole seconds since Unix epoch"""

    timestamp_usec: int
    """Sub-second part in microseconds"""

    wire_length: int
    """Bytes on the wire (original frame size)"""

    captured_length: int
    """Bytes actually captured (may be less than wire_length due to snaplen)"""

    @property
    def timestamp(self) -> float:
        """Timestamp in seconds with fractional part."""
        return self.timestamp_sec + self.timestamp_usec / 1_000_000.0

    @property
    def timestamp_us(self) -> int:
        return self.timestamp_sec * 1_000_000 + self.timestamp_usec

    @property
    def is_truncated(self) -> bool:
        """True if captured length < wire length (snaplen limited)."""
        return self.captured_length < self.wire_length

    @classmethod
    def from_timestamp_us(cls, timestamp_us: int, wire_length: int,
                          captured_length: int) -> "CaptureMetadata":
        sec, usec = divmod(int(timestamp_us), 1_000_000)
        return cls(sec, usec, wire_length, captured_length)


@dataclass(frozen=True)
class RawFrame:
    """
    Raw frame as read from a capture handle: bytes + capture metadata.

    frame_id is monotonic starting at 1 for each handle.
    """
    frame_id: int
    data: bytes
    metadata: CaptureMetadata
    link_type: int
    """libpcap DLT_* constant (e.g., 1 = DLT_EN10MB for Ethernet)"""


# ---------------------------------------------------------------------------
# Link layer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EthernetFrame:
    dst_mac: str
    src_mac: str
    ethertype: int
    payload: bytes = b""
    vlan_ids: Tuple[int, ...] = field(default_factory=tuple)
    synthesized: bool = False
    """True when the capture medium was not Ethernet and this header is a placeholder."""
    link_type: int = 1


# ---------------------------------------------------------------------------
# Network layer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IPv4Packet:
    version: int
    header_length: int
    tos: int
    total_length: int
    identification: int
    flags: int
    fragment_offset: int
    ttl: int
    protocol: int
    checksum: int
    src_ip: str
    dst_ip: str
    options: bytes = b""
    payload: bytes = b""

    @property
    def is_fragment(self) -> bool:
        return self.fragment_offset != 0 or bool(self.flags & 0x1)


@dataclass(frozen=True)
class ArpPacket:
    hardware_type: int
    protocol_type: int
    hardware_size: int
    protocol_size: int
    opcode: int
    sender_mac: str
    sender_ip: str
    target_mac: str
    target_ip: str
    payload: bytes = b""

    @property
    def subtype(self) -> Optional[Key]:
        return ARP_SUBTYPES.get(self.opcode)


@dataclass(frozen=True)
class OpaqueNetwork:
    """A recognised network protocol carried without structured decode (IPv6, SNMP, PPP, AppleTalk)."""
    key: Key
    ethertype: int
    payload: bytes = b""


@dataclass(frozen=True)
class UnclassifiedNetwork:
    ethertype: int
    payload: bytes = b""


NetworkLayer = Union[IPv4Packet, ArpPacket, OpaqueNetwork, UnclassifiedNetwork]


# ---------------------------------------------------------------------------
# Transport layer (only under IPv4)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TcpSegment:
    src_port: int
    dst_port: int
    seq: int
    ack: int
    header_length: int
    flags: int
    """TCP flags bitmask (FIN=0x01, SYN=0x02, RST=0x04, PSH=0x08,
    ACK=0x10, URG=0x20, ECE=0x40, CWR=0x80)."""
    window: int
    checksum: int
    urgent_pointer: int
    options: bytes = b""
    mss: Optional[int] = None
    payload: bytes = b""

    @property
    def flag_names(self) -> Tuple[str, ...]:
        """Return tuple of TCP flag names in canonical order."""
        flags = []
        flag_map = [
            (0x80, "CWR"),
            (0x40, "ECE"),
            (0x20, "URG"),
            (0x10, "ACK"),
            (0x08, "PSH"),
            (0x04, "RST"),
            (0x02, "SYN"),
            (0x01, "FIN"),
        ]
        for mask, name in flag_map:
            if self.flags & mask:
                flags.append(name)
        return tuple(flags)


@dataclass(frozen=True)
class UdpDatagram:
    src_port: int
    dst_port: int
    length: int
    checksum: int
    payload: bytes = b""


@dataclass(frozen=True)
class IcmpMessage:
    type: int
    code: int
    checksum: int
    payload: bytes = b""

    @property
    def subtype(self) -> Optional[Key]:
        """Named refinement of the type byte, None for unrecognised types."""
        return ICMP_SUBTYPES.get(self.type)


@dataclass(frozen=True)
class IgmpMessage:
    type: int
    max_response_time: int
    checksum: int
    group: str
    payload: bytes = b""


@dataclass(frozen=True)
class UnclassifiedTransport:
    protocol: int
    payload: bytes = b""


TransportLayer = Union[TcpSegment, UdpDatagram, IcmpMessage, IgmpMessage, UnclassifiedTransport]


@dataclass(frozen=True)
class DecodedFrame:
    """
    Frame after protocol decoding.

    ``key`` is the most specific classification of the frame; the router
    walks from it towards ``Key.DEFAULT``.
    """
    link: EthernetFrame
    key: Key = Key.DEFAULT
    network: Optional[NetworkLayer] = None
    transport: Optional[TransportLayer] = None
    metadata: Optional[CaptureMetadata] = None

    @property
    def layers(self) -> Tuple[Any, ...]:
        """Decoded nodes from the link layer down."""
        return tuple(node for node in (self.link, self.network, self.transport)
                     if node is not None)

    @property
    def ip(self) -> Optional[IPv4Packet]:
        return self.network if isinstance(self.network, IPv4Packet) else None

    @property
    def arp(self) -> Optional[ArpPacket]:
        return self.network if isinstance(self.network, ArpPacket) else None

    @property
    def stack_summary(self) -> str:
        """String representation of the protocol stack, e.g. ``ETH/IP4/TCP``."""
        names = ["ETH"]
        if self.link.vlan_ids:
            names.append("VLAN")
        if isinstance(self.network, IPv4Packet):
            names.append("IP4")
        elif isinstance(self.network, ArpPacket):
            names.append("RARP" if self.network.opcode in (3, 4) else "ARP")
        elif isinstance(self.network, OpaqueNetwork):
            names.append(self.network.key.value.upper())
        if isinstance(self.transport, TcpSegment):
            names.append("TCP")
        elif isinstance(self.transport, UdpDatagram):
            names.append("UDP")
        elif isinstance(self.transport, IcmpMessage):
            names.append("ICMP")
        elif isinstance(self.transport, IgmpMessage):
            names.append("IGMP")
        return "/".join(names)

    def to_dict(self) -> Dict[str, Any]:
        """Flat record used by the CLI."""
        link = self.link
        record: Dict[str, Any] = {
            "key": self.key.value,
            "stack_summary": self.stack_summary,
            "link_type": link.link_type,
            "synthesized": link.synthesized,
            "src_mac": link.src_mac,
            "dst_mac": link.dst_mac,
            "eth_type": link.ethertype,
            "vlan": list(link.vlan_ids),
            "src_ip": None,
            "dst_ip": None,
            "ip_protocol": None,
            "ttl": None,
            "src_port": None,
            "dst_port": None,
            "tcp_flags": None,
            "tcp_flags_names": [],
            "icmp_type": None,
            "icmp_code": None,
            "arp_opcode": None,
        }
        if self.metadata is not None:
            record["timestamp"] = self.metadata.timestamp
            record["wire_length"] = self.metadata.wire_length
            record["captured_length"] = self.metadata.captured_length
        net = self.network
        if isinstance(net, IPv4Packet):
            record.update(src_ip=net.src_ip, dst_ip=net.dst_ip,
                          ip_protocol=net.protocol, ttl=net.ttl)
        elif isinstance(net, ArpPacket):
            record.update(src_ip=net.sender_ip, dst_ip=net.target_ip,
                          arp_opcode=net.opcode)
        tr = self.transport
        if isinstance(tr, (TcpSegment, UdpDatagram)):
            record.update(src_port=tr.src_port, dst_port=tr.dst_port)
        if isinstance(tr, TcpSegment):
            record.update(tcp_flags=tr.flags, tcp_flags_names=list(tr.flag_names))
        elif isinstance(tr, IcmpMessage):
            record.update(icmp_type=tr.type, icmp_code=tr.code)
        return record

    def to_json(self) -> str:
        """Serialize to JSON with deterministic ordering."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=True)
