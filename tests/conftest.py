import struct
from typing import Iterable, List, Optional, Sequence, Union

import pytest

from pcapeasy.capture.bpf import bpf_available
from pcapeasy.capture.handle import CaptureHandle
from pcapeasy.exceptions import CaptureError
from pcapeasy.models.frame import CaptureMetadata, RawFrame

# BPF filters need libpcap on the host
requires_bpf = pytest.mark.skipif(not bpf_available(), reason="libpcap not available")


MAC_A = bytes.fromhex("aabbccddeeff")
MAC_B = bytes.fromhex("112233445566")


def ip_bytes(text: str) -> bytes:
    return bytes(int(part) for part in text.split("."))


def ethernet(payload: bytes, ethertype: int = 0x0800, dst: bytes = MAC_B, src: bytes = MAC_A) -> bytes:
    return dst + src + struct.pack("!H", ethertype) + payload


def ipv4(payload: bytes, proto: int = 6, src: str = "10.0.0.1", dst: str = "10.0.0.2",
         ttl: int = 64, flags_frag: int = 0) -> bytes:
    total = 20 + len(payload)
    header = struct.pack("!BBHHHBBH4s4s", 0x45, 0, total, 1, flags_frag, ttl, proto, 0,
                         ip_bytes(src), ip_bytes(dst))
    return header + payload


def tcp(src_port: int = 1234, dst_port: int = 80, flags: int = 0x02, payload: bytes = b"",
        options: bytes = b"") -> bytes:
    data_offset = (20 + len(options)) // 4
    header = struct.pack("!HHIIBBHHH", src_port, dst_port, 1000, 0, data_offset << 4, flags,
                         65535, 0, 0)
    return header + options + payload


def udp(src_port: int = 5353, dst_port: int = 53, payload: bytes = b"") -> bytes:
    return struct.pack("!HHHH", src_port, dst_port, 8 + len(payload), 0) + payload


def icmp(icmp_type: int = 8, code: int = 0, payload: bytes = b"ping") -> bytes:
    return struct.pack("!BBH", icmp_type, code, 0) + payload


def igmp(igmp_type: int = 0x16, group: str = "239.1.2.3") -> bytes:
    return struct.pack("!BBH4s", igmp_type, 0, 0, ip_bytes(group))


def arp(opcode: int = 1, sender_ip: str = "10.0.0.1", target_ip: str = "10.0.0.2") -> bytes:
    return struct.pack("!HHBBH6s4s6s4s", 1, 0x0800, 6, 4, opcode,
                       MAC_A, ip_bytes(sender_ip), b"\x00" * 6, ip_bytes(target_ip))


def tcp_frame(**kwargs) -> bytes:
    return ethernet(ipv4(tcp(**kwargs), proto=6))


def udp_frame(**kwargs) -> bytes:
    return ethernet(ipv4(udp(**kwargs), proto=17))


def icmp_frame(icmp_type: int = 8, code: int = 0) -> bytes:
    return ethernet(ipv4(icmp(icmp_type, code), proto=1))


def arp_frame(opcode: int = 1) -> bytes:
    ethertype = 0x8035 if opcode in (3, 4) else 0x0806
    return ethernet(arp(opcode), ethertype=ethertype)


def truncated_ip_frame() -> bytes:
    # Ethernet header claims IPv4, only 10 bytes of it follow
    return ethernet(b"\x45" + b"\x00" * 9)


FrameSpec = Union[bytes, tuple]


def write_pcap(path, frames: Iterable[FrameSpec], link_type: int = 1, nanosecond: bool = False,
               snaplen: int = 65535) -> str:
    """Write a little-endian pcap; a frame is bytes or (bytes, ts_sec, ts_frac[, wirelen])."""
    magic = 0xA1B23C4D if nanosecond else 0xA1B2C3D4
    out = [struct.pack("<IHHiIII", magic, 2, 4, 0, 0, snaplen, link_type)]
    for index, frame in enumerate(frames):
        if isinstance(frame, tuple):
            data, ts_sec, ts_frac = frame[:3]
            wirelen = frame[3] if len(frame) > 3 else len(data)
        else:
            data, ts_sec, ts_frac, wirelen = frame, 1_700_000_000 + index, 500, len(frame)
        out.append(struct.pack("<IIII", ts_sec, ts_frac, len(data), wirelen))
        out.append(data)
    with open(path, "wb") as f:
        f.write(b"".join(out))
    return str(path)


@pytest.fixture
def pcap_file(tmp_path):
    """Factory writing a pcap file under tmp_path and returning its path."""
    counter = {"n": 0}

    def _make(frames: Sequence[FrameSpec], **kwargs) -> str:
        counter["n"] += 1
        return write_pcap(tmp_path / f"capture{counter['n']}.pcap", frames, **kwargs)

    return _make


class FakeHandle(CaptureHandle):
    """In-memory capture handle standing in for an engine-provided one."""

    def __init__(self, frames: Sequence[bytes] = (), link_type: int = 1,
                 fail_after: Optional[int] = None):
        super().__init__()
        self.source = "fake0"
        self.link_type = link_type
        self._pending: List[RawFrame] = [
            RawFrame(frame_id=i + 1, data=data,
                     metadata=CaptureMetadata(1_700_000_000 + i, 0, len(data), len(data)),
                     link_type=link_type)
            for i, data in enumerate(frames)
        ]
        self._served = 0
        self._fail_after = fail_after
        self.close_calls = 0

    @property
    def exhausted(self) -> bool:
        return not self._pending

    def _pull(self, max_count, deadline):
        if self._fail_after is not None and self._served >= self._fail_after:
            raise CaptureError("device went away")
        batch = self._pending[:max_count]
        del self._pending[:max_count]
        self._served += len(batch)
        return batch

    def close(self):
        self.close_calls += 1
        super().close()


@pytest.fixture
def fake_handle():
    return FakeHandle
