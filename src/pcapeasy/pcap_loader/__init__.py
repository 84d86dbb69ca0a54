"""
PCAP/PCAPNG replay file loading.
"""

from .frame_source import IFrameSource
from .pcap_reader import PcapReader
from .pcapng_reader import PcapngReader
from ..exceptions import PcapFormatError

_PCAP_MAGIC = {
    b"\xa1\xb2\xc3\xd4",
    b"\xd4\xc3\xb2\xa1",
    b"\xa1\xb2\x3c\x4d",
    b"\x4d\x3c\xb2\xa1",
}
_PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"


def select_reader(filepath: str):
    """Pick the reader class by extension, then by magic number."""
    lower = filepath.lower()
    if lower.endswith(".pcapng"):
        return PcapngReader
    if lower.endswith(".pcap"):
        return PcapReader

    with open(filepath, "rb") as f:
        magic = f.read(4)
    if magic == _PCAPNG_MAGIC:
        return PcapngReader
    if magic in _PCAP_MAGIC:
        return PcapReader
    raise PcapFormatError(f"Unsupported capture file format: {filepath}")


def open_reader(filepath: str) -> IFrameSource:
    """Return an opened reader for ``filepath``."""
    reader = select_reader(filepath)(filepath)
    reader.open()
    return reader


__all__ = [
    'IFrameSource',
    'PcapReader',
    'PcapngReader',
    'select_reader',
    'open_reader',
]
