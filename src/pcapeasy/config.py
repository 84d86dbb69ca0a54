"""
Session configuration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional

from .exceptions import ConfigError
from .models.keys import Key, key_for_option, parse_key

DEFAULT_PACKETS_PER_LOOP = 32
DEFAULT_BYTES_TO_CAPTURE = 1024
DEFAULT_MIN_SNAPLEN = 256
DEFAULT_QUEUE_SIZE = 10000

REPLAY_PREFIX = "file:"
REPLAY_SUFFIXES = (".pcap", ".pcapng", ".cap")

SOURCE_DEVICE = "device"
SOURCE_REPLAY = "replay"
SOURCE_HANDLE = "handle"


@dataclass
class CaptureConfig:
    """Capture configuration."""
    device: Optional[str] = None
    """Interface name, ``file:<path>`` or a capture-file path; None = default device"""
    filter: Optional[str] = None
    packets_per_loop: int = DEFAULT_PACKETS_PER_LOOP
    bytes_to_capture: int = DEFAULT_BYTES_TO_CAPTURE
    min_snaplen: int = DEFAULT_MIN_SNAPLEN
    timeout_in_ms: int = 0
    """0 blocks until the batch fills or the source ends"""
    promiscuous: bool = False
    handle: Any = None
    """Externally supplied CaptureHandle; borrowed, never closed by the session"""
    callbacks: Dict[Key, Callable] = field(default_factory=dict)
    raw_callback: Optional[Callable] = None
    """Bypasses decoding and dispatch: raw_callback(session, data, metadata)"""
    decode_error_callback: Optional[Callable] = None
    """decode_error_callback(session, error, raw_frame)"""
    log_decode_errors: bool = True
    queue_size: int = DEFAULT_QUEUE_SIZE

    _OPTIONS = (
        "device",
        "filter",
        "packets_per_loop",
        "bytes_to_capture",
        "min_snaplen",
        "timeout_in_ms",
        "promiscuous",
        "handle",
        "callbacks",
        "raw_callback",
        "decode_error_callback",
        "log_decode_errors",
        "queue_size",
    )

    @classmethod
    def from_options(cls, **options) -> "CaptureConfig":
        """Build a config from keyword options; unknown options are rejected."""
        kwargs: Dict[str, Any] = {}
        callbacks: Dict[Key, Callable] = {}
        unknown = []
        for name, value in options.items():
            key = key_for_option(name)
            if key is not None:
                if value is not None:
                    callbacks[key] = value
            elif name in cls._OPTIONS:
                kwargs[name] = value
            else:
                unknown.append(name)
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")

        explicit = kwargs.pop("callbacks", None) or {}
        merged: Dict[Key, Callable] = {}
        for key, callback in explicit.items():
            try:
                merged[parse_key(key)] = callback
            except ValueError as e:
                raise ConfigError(f"Unknown classification key: {key!r}") from e
        merged.update(callbacks)
        return cls(callbacks=merged, **kwargs)

    def normalized(self) -> "CaptureConfig":
        """Validate and apply defaults/floors; returns a new config."""
        if self.handle is not None and self.device is not None:
            raise ConfigError("Give either a device/replay file or an external handle, not both")
        for name in ("packets_per_loop", "bytes_to_capture", "min_snaplen",
                     "timeout_in_ms", "queue_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
        if self.timeout_in_ms < 0:
            raise ConfigError(f"timeout_in_ms must be >= 0, got {self.timeout_in_ms}")
        if self.min_snaplen < 1:
            raise ConfigError(f"min_snaplen must be positive, got {self.min_snaplen}")
        if self.queue_size < 1:
            raise ConfigError(f"queue_size must be positive, got {self.queue_size}")
        for name in ("raw_callback", "decode_error_callback"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigError(f"{name} is not callable: {value!r}")
        for key, callback in self.callbacks.items():
            if not callable(callback):
                raise ConfigError(f"{parse_key(key).option_name} is not callable: {callback!r}")

        packets = self.packets_per_loop if self.packets_per_loop >= 1 else DEFAULT_PACKETS_PER_LOOP
        snaplen = max(self.bytes_to_capture, self.min_snaplen)
        return replace(self, packets_per_loop=packets, bytes_to_capture=snaplen,
                       callbacks=dict(self.callbacks))

    @property
    def source_kind(self) -> str:
        if self.handle is not None:
            return SOURCE_HANDLE
        if self.replay_path is not None:
            return SOURCE_REPLAY
        return SOURCE_DEVICE

    @property
    def replay_path(self) -> Optional[str]:
        """Capture file named by ``device``, if it names one."""
        device = self.device
        if not device:
            return None
        if device.startswith(REPLAY_PREFIX):
            return device[len(REPLAY_PREFIX):]
        if device.lower().endswith(REPLAY_SUFFIXES) and os.path.isfile(device):
            return device
        return None
