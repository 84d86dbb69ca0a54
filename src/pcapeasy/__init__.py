"""
pcapeasy: typed, protocol-classified frames from live capture or replay
files, routed to the most specific registered handler.
"""

from .config import CaptureConfig
from .session import PcapSession
from .models import Key, DecodedFrame, CaptureMetadata
from .capture import CaptureHandle, CaptureStats, ReplayHandle, decode_frame
from .dispatch import HandlerRegistry, dispatch
from .exceptions import (
    PcapEasyError,
    ConfigError,
    FilterError,
    DecodeError,
    CaptureError,
    SessionClosedError,
)

__version__ = "0.1.0"

__all__ = [
    'CaptureConfig',
    'PcapSession',
    'Key',
    'DecodedFrame',
    'CaptureMetadata',
    'CaptureHandle',
    'CaptureStats',
    'ReplayHandle',
    'decode_frame',
    'HandlerRegistry',
    'dispatch',
    'PcapEasyError',
    'ConfigError',
    'FilterError',
    'DecodeError',
    'CaptureError',
    'SessionClosedError',
]
