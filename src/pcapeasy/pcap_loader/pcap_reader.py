"""
PCAP file format reader (legacy .pcap).

Reference: https://wiki.wireshark.org/Development/LibpcapFileFormat

File structure:
- 24-byte global header
- Repeated frame records:
  - 16-byte record header (ts_sec, ts_frac, caplen, wirelen)
  - Frame data (caplen bytes)
"""

import logging
import mmap
import os
import struct
from typing import Any, Dict, Iterator, Optional

from ..exceptions import PcapFormatError, PcapEOFError
from ..models.frame import CaptureMetadata, RawFrame
from .frame_source import IFrameSource

logger = logging.getLogger(__name__)

GLOBAL_HEADER_LEN = 24
RECORD_HEADER_LEN = 16


class PcapReader(IFrameSource):
    """Reads legacy PCAP format files."""

    # Magic numbers for format detection
    MAGIC_NUMBER_BIG_ENDIAN = 0xA1B2C3D4        # Standard microsecond
    MAGIC_NUMBER_LITTLE_ENDIAN = 0xD4C3B2A1     # Swapped microsecond
    MAGIC_NUMBER_BIG_ENDIAN_NANO = 0xA1B23C4D   # Nanosecond resolution
    MAGIC_NUMBER_LITTLE_ENDIAN_NANO = 0x4D3CB2A1  # Swapped nanosecond

    _MAGICS = {
        MAGIC_NUMBER_BIG_ENDIAN: ('>', False),
        MAGIC_NUMBER_LITTLE_ENDIAN: ('<', False),
        MAGIC_NUMBER_BIG_ENDIAN_NANO: ('>', True),
        MAGIC_NUMBER_LITTLE_ENDIAN_NANO: ('<', True),
    }

    def __init__(self, filepath: str):
        self.filepath = filepath
        self.file_handle = None
        self.mmap: Optional[mmap.mmap] = None
        self.byte_order = '>'
        self.is_nanosecond = False
        self.link_type = 1
        self.snaplen = 0
        self._frame_count = 0
        self._file_size = 0

    def open(self):
        if not os.path.exists(self.filepath):
            raise FileNotFoundError(f"PCAP file not found: {self.filepath}")

        self.file_handle = open(self.filepath, 'rb')
        self._file_size = os.path.getsize(self.filepath)
        try:
            self._read_global_header()
        except PcapFormatError:
            self.close()
            raise

        if self._file_size == GLOBAL_HEADER_LEN:
            # Header-only capture: nothing to map
            return
        try:
            self.mmap = mmap.mmap(self.file_handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            self.close()
            raise PcapFormatError(f"Failed to memory map file: {e}") from e

    def _read_global_header(self):
        self.file_handle.seek(0)
        header_data = self.file_handle.read(GLOBAL_HEADER_LEN)
        if len(header_data) < GLOBAL_HEADER_LEN:
            raise PcapFormatError("File too small for PCAP header")

        magic_number, = struct.unpack('>I', header_data[0:4])
        if magic_number not in self._MAGICS:
            raise PcapFormatError(f"Invalid PCAP magic number: 0x{magic_number:08x}")
        self.byte_order, self.is_nanosecond = self._MAGICS[magic_number]

        # version_major, version_minor, thiszone, sigfigs, snaplen, link_type
        _, _, _, _, self.snaplen, self.link_type = \
            struct.unpack(self.byte_order + 'HHiIII', header_data[4:24])
        logger.debug("Opened pcap %s (link type %d, snaplen %d)",
                     self.filepath, self.link_type, self.snaplen)

    def __iter__(self) -> Iterator[RawFrame]:
        if self.file_handle is None:
            raise RuntimeError("PCAP file not opened. Call open() or use 'with' statement.")
        if self.mmap is None:
            return

        view = self.mmap
        end = len(view)
        offset = GLOBAL_HEADER_LEN
        frame_id = 1
        fmt = self.byte_order + 'IIII'

        while offset + RECORD_HEADER_LEN <= end:
            ts_sec, ts_frac, caplen, wirelen = struct.unpack_from(fmt, view, offset)
            offset += RECORD_HEADER_LEN
            if offset + caplen > end:
                raise PcapEOFError(
                    f"Frame {frame_id} truncated: expected {caplen} bytes at offset "
                    f"{offset}, but file only has {end} bytes"
                )
            ts_usec = ts_frac // 1000 if self.is_nanosecond else ts_frac
            data = bytes(view[offset:offset + caplen])
            offset += caplen

            yield RawFrame(
                frame_id=frame_id,
                data=data,
                metadata=CaptureMetadata(ts_sec, ts_usec, wirelen, caplen),
                link_type=self.link_type,
            )
            frame_id += 1
            self._frame_count += 1

        if offset != end:
            logger.warning("Ignoring %d trailing bytes in %s", end - offset, self.filepath)

    def close(self):
        """Release resources. Safe to call multiple times."""
        if self.mmap is not None:
            self.mmap.close()
            self.mmap = None
        if self.file_handle is not None:
            self.file_handle.close()
            self.file_handle = None

    def get_source_info(self) -> Dict[str, Any]:
        return {
            'frame_count': self._frame_count,
            'link_types': [self.link_type],
            'file_size': self._file_size,
            'format': 'pcap',
            'byte_order': self.byte_order,
            'is_nanosecond': self.is_nanosecond,
            'snaplen': self.snaplen,
        }
