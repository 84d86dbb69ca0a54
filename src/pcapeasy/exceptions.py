# Custom exceptions

"""
Custom exceptions for pcapeasy.
"""

from typing import Optional


class PcapEasyError(Exception):
    """Base exception for all pcapeasy errors."""
    pass


class ConfigError(PcapEasyError):
    """Raised when capture options are invalid or contradict each other."""
    pass


class FilterError(PcapEasyError):
    """Raised when a filter expression cannot be compiled or installed."""
    pass


class DecodeError(PcapEasyError):
    """Raised when a mandatory header is truncated or malformed.

    ``layer`` names the protocol whose header failed (e.g. ``"ipv4"``).
    ``partial`` holds the frame decoded up to the failing layer, when
    the link layer itself was readable.
    """

    def __init__(self, message: str, layer: Optional[str] = None, partial=None):
        super().__init__(message)
        self.layer = layer
        self.partial = partial


class CaptureError(PcapEasyError):
    """Raised on an engine-level fault while opening or reading a source."""
    pass


class SessionClosedError(PcapEasyError):
    """Raised when an operation is attempted on a closed session."""
    pass


class PcapError(CaptureError):
    """Base exception for all PCAP-related errors."""
    pass


class PcapFormatError(PcapError):
    """Raised when PCAP file format is invalid or corrupt."""
    pass


class PcapEOFError(PcapFormatError):
    """Raised when PCAP file ends unexpectedly (truncated)."""
    pass


class PcapngError(PcapError):
    """Base exception for PCAPNG-specific errors."""
    pass


class PcapngFormatError(PcapngError):
    """Raised when PCAPNG file format is invalid."""
    pass
