"""
IFrameSource interface.

Contract for capture-file readers (PcapReader, PcapngReader):

1. Deterministic iteration order (file order)
2. frame_id starts at 1 and increments by 1
3. close() is safe to call multiple times
4. Format problems raise PcapError subclasses
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator

from ..models.frame import RawFrame


class IFrameSource(ABC):
    """Abstract base class for all capture-file frame sources."""

    @abstractmethod
    def open(self):
        """
        Open the source for reading: validate the format (magic numbers),
        map the file and read the global headers.

        Raises:
            FileNotFoundError: If file doesn't exist
            PcapFormatError / PcapngFormatError: If file format is invalid
        """
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[RawFrame]:
        """
        Iterate through frames in capture order.

        Yields RawFrame objects; stops cleanly at end of file. A record
        that runs past the end of the file raises PcapEOFError.
        """
        pass

    @abstractmethod
    def close(self):
        """Release file handles and memory maps. MUST be idempotent."""
        pass

    @abstractmethod
    def get_source_info(self) -> Dict[str, Any]:
        """
        Return source metadata with AT LEAST:
        - 'frame_count': frames yielded so far
        - 'link_types': DLT_* constants present
        - 'file_size': size in bytes
        - 'format': 'pcap' or 'pcapng'
        """
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
