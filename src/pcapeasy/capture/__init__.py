"""
Frame capture and decoding subsystem.

The scapy live backend (``capture.scapy_backend``) is imported on demand.
Capture filters for every source are compiled by libpcap through scapy
(``capture.bpf``).
"""

from .handle import CaptureHandle, CaptureStats
from .replay import ReplayHandle
from .decoder import FrameDecoder, decode_frame

__all__ = [
    'CaptureHandle',
    'CaptureStats',
    'ReplayHandle',
    'FrameDecoder',
    'decode_frame',
]
