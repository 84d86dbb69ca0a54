"""
Capture session: owns the capture handle, runs the batch loop and routes
every decoded frame to the most specific registered handler.

Example::

    def on_tcp(session, ether, ip, tcp, meta):
        print(ip.src_ip, tcp.src_port, "->", ip.dst_ip, tcp.dst_port)

    with PcapSession(device="file:capture.pcap", tcp_callback=on_tcp) as session:
        while session.run_batch():
            pass
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .capture.decoder import FrameDecoder
from .capture.handle import CaptureHandle, CaptureStats
from .capture.replay import ReplayHandle
from .config import CaptureConfig, SOURCE_DEVICE, SOURCE_HANDLE, SOURCE_REPLAY
from .dispatch.registry import HandlerRegistry
from .dispatch.router import dispatch
from .exceptions import (
    CaptureError,
    ConfigError,
    DecodeError,
    FilterError,
    SessionClosedError,
)
from .models.frame import RawFrame
from .utils import netaddr

logger = logging.getLogger(__name__)

_UNOPENED = "unopened"
_OPEN = "open"
_CLOSED = "closed"


class PcapSession:
    """A configured capture source plus its handler registry.

    The session is opened by the constructor. ``run_batch()`` consumes up
    to ``packets_per_loop`` frames and returns how many were consumed; 0
    means the batch timed out empty or the source is exhausted.
    """

    def __init__(self, config: Optional[CaptureConfig] = None, **options):
        if config is not None and options:
            raise ConfigError("Pass either a CaptureConfig or keyword options, not both")
        if config is None:
            config = CaptureConfig.from_options(**options)
        self.config = config.normalized()
        self.registry = HandlerRegistry(self.config.callbacks).freeze()
        self.decoder = FrameDecoder()
        self.device: Optional[str] = None
        self.counters: Dict[str, int] = {
            "processed": 0,
            "decode_errors": 0,
            "dispatched": 0,
        }
        self._handle: Optional[CaptureHandle] = None
        self._owns_handle = False
        self._network_info: Optional[Tuple[str, str]] = None
        # Frames read but not yet handled when a handler raised
        self._pending: List[RawFrame] = []
        self._state = _UNOPENED
        self.open()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        if self._state == _OPEN:
            return
        if self._state == _CLOSED:
            raise SessionClosedError("Session is closed")

        config = self.config
        kind = config.source_kind
        if kind == SOURCE_HANDLE:
            if not isinstance(config.handle, CaptureHandle):
                raise ConfigError(f"handle must be a CaptureHandle, got {type(config.handle).__name__}")
            self._handle = config.handle
            self._owns_handle = False
            self.device = config.handle.source
        elif kind == SOURCE_REPLAY:
            self.device = config.replay_path
            self._handle = ReplayHandle(self.device, snaplen=config.bytes_to_capture)
            self._owns_handle = True
        else:
            from .capture.scapy_backend import LiveHandle, lookup_default_device, resolve_network_info
            self.device = config.device or lookup_default_device()
            self._handle = LiveHandle(
                self.device,
                snaplen=config.bytes_to_capture,
                promiscuous=config.promiscuous,
                queue_size=config.queue_size,
                filter_expr=config.filter,
            )
            self._owns_handle = True
            self._network_info = resolve_network_info(self.device)
        logger.debug("Using %s source %s", kind, self.device)

        if config.filter and kind != SOURCE_DEVICE:
            try:
                self._handle.install_filter(config.filter)
            except FilterError:
                self._release_handle()
                self._state = _CLOSED
                raise

        self._state = _OPEN
        logger.info("Capture session open on %s (batch=%d, snaplen=%d, timeout=%dms)",
                    self.device, config.packets_per_loop, config.bytes_to_capture,
                    config.timeout_in_ms)

    def close(self) -> None:
        """Release the capture handle. Safe to call multiple times."""
        if self._state == _CLOSED:
            return
        self._release_handle()
        self._state = _CLOSED
        logger.info("Capture session on %s closed", self.device)

    def _release_handle(self) -> None:
        if self._handle is not None and self._owns_handle:
            self._handle.close()

    @property
    def closed(self) -> bool:
        return self._state == _CLOSED

    def _ensure_open(self) -> None:
        if self._state != _OPEN:
            raise SessionClosedError("Session is closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        # Safety net in case the caller forgets to close()
        if getattr(self, "_state", None) == _OPEN:
            self.close()

    # ------------------------------------------------------------------
    # Batch loop
    # ------------------------------------------------------------------

    @property
    def raw_mode(self) -> bool:
        return self.config.raw_callback is not None

    def run_batch(self) -> Optional[int]:
        """Consume up to ``packets_per_loop`` frames.

        Returns the number of frames consumed (decode failures included),
        or None in raw mode. Raises CaptureError on an engine fault.

        A handler exception propagates and leaves the rest of the batch
        pending; the next call handles those frames before reading more.
        """
        self._ensure_open()
        if self._pending:
            frames, self._pending = self._pending, []
        else:
            frames = self._read()

        for index, frame in enumerate(frames):
            try:
                if self.raw_mode:
                    self.config.raw_callback(self, frame.data, frame.metadata)
                else:
                    self._process(frame)
            except Exception:
                self._pending = frames[index + 1:]
                raise
        return None if self.raw_mode else len(frames)

    loop = run_batch

    def _read(self) -> List[RawFrame]:
        try:
            return self._handle.read_batch(self.config.packets_per_loop, self.config.timeout_in_ms)
        except CaptureError as e:
            logger.error("Capture fault on %s: %s", self.device, e)
            raise
        except OSError as e:
            logger.error("Capture fault on %s: %s", self.device, e)
            raise CaptureError(f"Read failed on {self.device}: {e}") from e

    def _process(self, frame: RawFrame) -> None:
        self.counters["processed"] += 1
        try:
            decoded = self.decoder.decode_raw(frame)
        except DecodeError as e:
            self.counters["decode_errors"] += 1
            if self.config.log_decode_errors:
                logger.warning("Frame %d from %s not decoded (%s): %s",
                               frame.frame_id, self.device, e.layer, e)
            if self.config.decode_error_callback is not None:
                self.config.decode_error_callback(self, e, frame)
            return
        if dispatch(decoded, self.registry, self):
            self.counters["dispatched"] += 1

    def drain(self) -> Optional[int]:
        """Run batches until the source is exhausted.

        Returns the total consumed, or None in raw mode. On a live source
        this only returns by raising.
        """
        total = 0
        while True:
            count = self.run_batch()
            if count:
                total += count
            if self._handle.exhausted and not self._pending:
                break
        return None if self.raw_mode else total

    # ------------------------------------------------------------------
    # Stats and introspection
    # ------------------------------------------------------------------

    def stats(self) -> CaptureStats:
        self._ensure_open()
        return self._handle.stats()

    @property
    def handle(self) -> CaptureHandle:
        self._ensure_open()
        return self._handle

    @property
    def link_type(self) -> int:
        self._ensure_open()
        return self._handle.link_type

    def network(self) -> Optional[str]:
        """Network address of the live device; None for replay or external handles."""
        self._ensure_open()
        return self._network_info[0] if self._network_info else None

    def netmask(self) -> Optional[str]:
        self._ensure_open()
        return self._network_info[1] if self._network_info else None

    def cidr(self) -> Optional[str]:
        self._ensure_open()
        if not self._network_info:
            return None
        return netaddr.cidr(*self._network_info)

    def is_local(self, address) -> Optional[bool]:
        """True if ``address`` is on the device's network; None when unknown."""
        self._ensure_open()
        if not self._network_info:
            return None
        network, netmask = self._network_info
        return netaddr.membership(address, network, netmask)
