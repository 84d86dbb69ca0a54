"""
PCAPNG file format reader (next generation .pcapng).

Reference: https://github.com/pcapng/pcapng

Block-based format: Block Type (4B) + Block Length (4B) + Body + Block
Length (4B), 32-bit aligned. Blocks used here:

1. Section Header Block (SHB) - byte order for the section
2. Interface Description Block (IDB) - link type and timestamp resolution
3. Enhanced Packet Block (EPB) - frame data with timestamp
4. Simple Packet Block (SPB) - frame data without timestamp

Other blocks are skipped.
"""

import logging
import mmap
import os
import struct
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import PcapngFormatError, PcapEOFError
from ..models.frame import CaptureMetadata, RawFrame
from .frame_source import IFrameSource

logger = logging.getLogger(__name__)

BYTE_ORDER_MAGIC = 0x1A2B3C4D


class PcapngReader(IFrameSource):
    """Reads PCAPNG format files."""

    # Block type constants
    BLOCK_TYPE_SECTION_HEADER = 0x0A0D0D0A
    BLOCK_TYPE_INTERFACE_DESCRIPTION = 0x00000001
    BLOCK_TYPE_SIMPLE_PACKET = 0x00000003
    BLOCK_TYPE_NAME_RESOLUTION = 0x00000004
    BLOCK_TYPE_INTERFACE_STATS = 0x00000005
    BLOCK_TYPE_ENHANCED_PACKET = 0x00000006

    def __init__(self, filepath: str):
        self.filepath = filepath
        self.file_handle = None
        self.mmap: Optional[mmap.mmap] = None
        # Interfaces of the current section, indexed by interface id
        self.interfaces: List[Dict[str, Any]] = []
        self.byte_order = '<'
        self._link_types: List[int] = []
        self._frame_count = 0
        self._file_size = 0

    def open(self):
        if not os.path.exists(self.filepath):
            raise FileNotFoundError(f"PCAPNG file not found: {self.filepath}")

        self.file_handle = open(self.filepath, 'rb')
        self._file_size = os.path.getsize(self.filepath)
        if self._file_size < 28:
            self.close()
            raise PcapngFormatError("File too small for a Section Header Block")
        try:
            self.mmap = mmap.mmap(self.file_handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            self.close()
            raise PcapngFormatError(f"Failed to memory map file: {e}") from e

        block_type = struct.unpack_from('<I', self.mmap, 0)[0]
        if block_type != self.BLOCK_TYPE_SECTION_HEADER:
            self.close()
            raise PcapngFormatError("No Section Header Block found")

    def _read_block_header(self, offset: int):
        """Return (block_type, block_length) for the block at ``offset``."""
        if offset + 8 > len(self.mmap):
            raise PcapEOFError(f"Not enough bytes for block header at offset {offset}")
        block_type, block_length = struct.unpack_from(self.byte_order + 'II', self.mmap, offset)
        if block_length < 12 or block_length % 4:
            raise PcapngFormatError(f"Invalid block length {block_length} at offset {offset}")
        if offset + block_length > len(self.mmap):
            raise PcapEOFError(
                f"Block extends past end of file: offset={offset}, "
                f"length={block_length}, file size={len(self.mmap)}"
            )
        return block_type, block_length

    def _parse_section_header_block(self, offset: int):
        bom_bytes = self.mmap[offset + 8:offset + 12]
        if struct.unpack('<I', bom_bytes)[0] == BYTE_ORDER_MAGIC:
            self.byte_order = '<'
        elif struct.unpack('>I', bom_bytes)[0] == BYTE_ORDER_MAGIC:
            self.byte_order = '>'
        else:
            raise PcapngFormatError(f"Invalid byte-order magic at offset {offset}")
        # A new section starts a new interface numbering
        self.interfaces = []

    def _parse_interface_description_block(self, offset: int, block_length: int):
        link_type, _, snaplen = struct.unpack_from(self.byte_order + 'HHI', self.mmap, offset + 8)
        info = {
            'link_type': link_type,
            'snaplen': snaplen,
            'units_per_second': 1_000_000,  # default if_tsresol is 10^-6
            'name': None,
        }

        opt_offset = offset + 16
        opt_end = offset + block_length - 4
        while opt_offset + 4 <= opt_end:
            opt_code, opt_len = struct.unpack_from(self.byte_order + 'HH', self.mmap, opt_offset)
            if opt_code == 0:  # opt_endofopt
                break
            value = self.mmap[opt_offset + 4:opt_offset + 4 + opt_len]
            if opt_code == 2:  # if_name
                info['name'] = value.decode('utf-8', errors='ignore').rstrip('\x00')
            elif opt_code == 9 and value:  # if_tsresol
                resol = value[0]
                if resol & 0x80:
                    info['units_per_second'] = 2 ** (resol & 0x7F)
                else:
                    info['units_per_second'] = 10 ** resol
            opt_offset += 4 + ((opt_len + 3) // 4) * 4

        self.interfaces.append(info)
        if link_type not in self._link_types:
            self._link_types.append(link_type)

    def _interface(self, interface_id: int) -> Dict[str, Any]:
        if interface_id >= len(self.interfaces):
            raise PcapngFormatError(f"Unknown interface_id {interface_id}")
        return self.interfaces[interface_id]

    def _parse_enhanced_packet_block(self, offset: int, frame_id: int) -> RawFrame:
        interface_id, ts_high, ts_low, caplen, wirelen = \
            struct.unpack_from(self.byte_order + 'IIIII', self.mmap, offset + 8)
        info = self._interface(interface_id)
        ts_raw = (ts_high << 32) | ts_low
        timestamp_us = ts_raw * 1_000_000 // info['units_per_second']
        data_start = offset + 28
        data = bytes(self.mmap[data_start:data_start + caplen])
        return RawFrame(
            frame_id=frame_id,
            data=data,
            metadata=CaptureMetadata.from_timestamp_us(timestamp_us, wirelen, len(data)),
            link_type=info['link_type'],
        )

    def _parse_simple_packet_block(self, offset: int, block_length: int, frame_id: int) -> RawFrame:
        info = self._interface(0)
        wirelen = struct.unpack_from(self.byte_order + 'I', self.mmap, offset + 8)[0]
        caplen = min(wirelen, block_length - 16)
        if info['snaplen']:
            caplen = min(caplen, info['snaplen'])
        data = bytes(self.mmap[offset + 12:offset + 12 + caplen])
        return RawFrame(
            frame_id=frame_id,
            data=data,
            metadata=CaptureMetadata(0, 0, wirelen, len(data)),
            link_type=info['link_type'],
        )

    def __iter__(self) -> Iterator[RawFrame]:
        if self.mmap is None:
            raise RuntimeError("PCAPNG file not opened. Call open() or use 'with' statement.")

        offset = 0
        frame_id = 1
        end = len(self.mmap)
        while offset < end:
            if offset + 8 > end:
                logger.warning("Ignoring %d trailing bytes in %s", end - offset, self.filepath)
                break
            if struct.unpack_from('<I', self.mmap, offset)[0] == self.BLOCK_TYPE_SECTION_HEADER:
                self._parse_section_header_block(offset)
            block_type, block_length = self._read_block_header(offset)

            frame = None
            if block_type == self.BLOCK_TYPE_INTERFACE_DESCRIPTION:
                self._parse_interface_description_block(offset, block_length)
            elif block_type == self.BLOCK_TYPE_ENHANCED_PACKET:
                frame = self._parse_enhanced_packet_block(offset, frame_id)
            elif block_type == self.BLOCK_TYPE_SIMPLE_PACKET:
                frame = self._parse_simple_packet_block(offset, block_length, frame_id)

            offset += block_length
            if frame is not None:
                self._frame_count += 1
                frame_id += 1
                yield frame

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
            'link_types': list(self._link_types),
            'file_size': self._file_size,
            'format': 'pcapng',
            'interfaces': list(self.interfaces),
        }
