"""
Scapy-based live capture backend.

An ``AsyncSniffer`` runs on scapy's own thread and pushes every frame into
a bounded queue; the session drains the queue in batches from its thread.
Frames arriving while the queue is full are counted as engine drops.
"""
import itertools
import logging
import queue
import time
from typing import Any, Dict, List, Optional, Tuple

from scapy.all import AsyncSniffer, conf, get_if_addr, get_if_hwaddr, get_if_list
from scapy.error import Scapy_Exception
from scapy.utils import ltoa

from ..exceptions import CaptureError
from ..models.frame import CaptureMetadata, RawFrame
from . import bpf
from .handle import CaptureHandle, CaptureStats
from .protocols import DLT_EN10MB

logger = logging.getLogger(__name__)

# How often a blocking read wakes up to check the sniffer is still alive
_POLL_INTERVAL = 0.1


class LiveHandle(CaptureHandle):
    """Live capture on a network interface."""

    def __init__(self, device: str, snaplen: Optional[int] = None,
                 promiscuous: bool = False, queue_size: int = 10000,
                 filter_expr: Optional[str] = None):
        super().__init__(snaplen=snaplen)
        self.source = device
        self.device = device
        self.promiscuous = promiscuous
        self.link_type = DLT_EN10MB
        self._queue: "queue.Queue[RawFrame]" = queue.Queue(maxsize=queue_size)
        self._ids = itertools.count(1)
        self._dropped = 0
        self._bpf_expression: Optional[str] = None
        self._sniffer = None

        if filter_expr and filter_expr.strip():
            bpf.validate(filter_expr, link_type=self.link_type)
            self._bpf_expression = filter_expr
        self._start()

    def _start(self) -> None:
        logger.debug("Starting sniffer on %s (promisc=%s, filter=%r)",
                     self.device, self.promiscuous, self._bpf_expression)
        try:
            self._sniffer = AsyncSniffer(
                iface=self.device,
                prn=self._on_packet,
                filter=self._bpf_expression,
                store=False,
                promisc=self.promiscuous,
            )
            self._sniffer.start()
        except (OSError, Scapy_Exception, ValueError) as e:
            logger.error("Failed to start capture on %r: %s", self.device, e)
            raise CaptureError(f"Failed to start capture on {self.device}: {e}") from e

    def _stop(self) -> None:
        if self._sniffer is not None and self._sniffer.running:
            self._sniffer.stop()
            logger.debug("Sniffer on %s stopped", self.device)

    @property
    def filter_expression(self) -> Optional[str]:
        return self._bpf_expression

    def install_filter(self, expression: Optional[str]) -> None:
        """Restart the sniffer with a kernel filter; raises FilterError."""
        if expression and expression.strip():
            bpf.validate(expression, link_type=self.link_type)
        else:
            expression = None
        self._stop()
        self._bpf_expression = expression
        self._start()
        logger.debug("Installed filter %r on %s", expression, self.source)

    def _on_packet(self, packet) -> None:
        """Runs on the sniffer thread for each captured frame."""
        data = bytes(packet)
        ts = float(packet.time)
        sec = int(ts)
        wirelen = getattr(packet, "wirelen", None) or len(data)
        frame = RawFrame(
            frame_id=next(self._ids),
            data=data,
            metadata=CaptureMetadata(sec, int(round((ts - sec) * 1_000_000)), wirelen, len(data)),
            link_type=conf.l2types.layer2num.get(type(packet), DLT_EN10MB),
        )
        try:
            self._queue.put_nowait(frame)
        except queue.Full:
            self._dropped += 1
            if self._dropped % 100 == 1:
                logger.warning("Capture queue full on %s, %d frames dropped", self.device, self._dropped)

    def _check_sniffer(self) -> None:
        error = getattr(self._sniffer, "exception", None)
        if error is not None:
            raise CaptureError(f"Capture on {self.device} failed: {error}") from error

    @property
    def exhausted(self) -> bool:
        thread = self._sniffer.thread
        return (thread is None or not thread.is_alive()) and self._queue.empty()

    def _pull(self, max_count: int, deadline: Optional[float]) -> List[RawFrame]:
        frames: List[RawFrame] = []
        while not frames:
            self._check_sniffer()
            if self.exhausted:
                return frames
            wait = _POLL_INTERVAL
            if deadline is not None:
                wait = min(wait, deadline - time.monotonic())
                if wait <= 0:
                    return frames
            try:
                frames.append(self._queue.get(timeout=wait))
            except queue.Empty:
                continue

        while len(frames) < max_count:
            try:
                frames.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return frames

    def stats(self) -> CaptureStats:
        return CaptureStats(
            dropped_by_engine=self._dropped,
            dropped_by_interface=0,
            received=self._received,
        )

    def close(self) -> None:
        if not self._closed:
            self._stop()
        super().close()


def _iface_name(iface: Any) -> str:
    if isinstance(iface, str):
        return iface
    return iface.network_name


def lookup_default_device() -> str:
    """Name of scapy's default capture interface."""
    if conf.iface is None:
        raise CaptureError("No default capture device found")
    return _iface_name(conf.iface)


def resolve_network_info(device: str) -> Optional[Tuple[str, str]]:
    """Return ``(network, netmask)`` for ``device`` from the routing table, or None."""
    try:
        address = get_if_addr(device)
    except (OSError, Scapy_Exception, ValueError) as e:
        logger.debug("No address for %s: %s", device, e)
        return None

    candidates = []
    for net, msk, _gw, iface, addr, _metric in conf.route.routes:
        if msk == 0 or _iface_name(iface) != device:
            continue
        candidates.append((net, msk, addr))
    if not candidates:
        return None

    # Prefer the directly connected route that holds the interface address
    for net, msk, addr in sorted(candidates, key=lambda c: c[1], reverse=True):
        if addr == address:
            return ltoa(net), ltoa(msk)
    net, msk, _ = candidates[0]
    return ltoa(net), ltoa(msk)


def list_interfaces() -> List[Dict[str, Any]]:
    """List capture interfaces known to scapy."""
    interfaces = []
    for name in get_if_list():
        info: Dict[str, Any] = {'name': name, 'ip': None, 'mac': None}
        try:
            info['ip'] = get_if_addr(name)
            info['mac'] = get_if_hwaddr(name)
        except (OSError, Scapy_Exception, ValueError) as e:
            logger.debug("Partial info for %s: %s", name, e)
        interfaces.append(info)
    return interfaces
