"""
Capture handle interface definition.

A handle is what the capture engine hands back from ``open``: it yields
raw frames in bounded batches, applies the installed filter, reports
statistics and is closed exactly once by its owner.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, replace
from typing import Dict, List, Optional

from ..exceptions import CaptureError
from ..models.frame import RawFrame
from .bpf import BpfFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureStats:
    """Counters reported by the capture engine."""
    dropped_by_engine: int = 0
    dropped_by_interface: int = 0
    received: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class CaptureHandle(ABC):
    """Capture handle interface.

    Subclasses implement ``_pull``; filtering, snap-length truncation and
    the ``received`` counter live here.
    """

    link_type: int = 1
    source: str = ""

    def __init__(self, snaplen: Optional[int] = None):
        self.snaplen = snaplen
        self._filter: Optional[BpfFilter] = None
        self._received = 0
        self._closed = False

    @abstractmethod
    def _pull(self, max_count: int, deadline: Optional[float]) -> List[RawFrame]:
        """Return up to ``max_count`` frames.

        ``deadline`` is a ``time.monotonic()`` value, or None to wait until
        frames are available or the source ends. An empty list means
        timeout or end-of-source (see ``exhausted``).
        """
        raise NotImplementedError

    @property
    def exhausted(self) -> bool:
        """True once the source can never yield another frame."""
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def filter_expression(self) -> Optional[str]:
        return self._filter.expression if self._filter is not None else None

    def install_filter(self, expression: Optional[str]) -> None:
        """Compile and install a BPF ``expression``; raises FilterError.

        None or a blank expression removes the filter.
        """
        previous = self._filter
        if expression and expression.strip():
            self._filter = BpfFilter(expression, self.link_type)
        else:
            self._filter = None
        if previous is not None:
            previous.close()
        logger.debug("Installed filter %r on %s", expression, self.source)

    def read_batch(self, max_count: int, timeout_ms: int = 0) -> List[RawFrame]:
        """Read up to ``max_count`` frames passing the filter, in arrival order."""
        if self._closed:
            raise CaptureError(f"Capture handle for {self.source} is closed")
        deadline = time.monotonic() + timeout_ms / 1000.0 if timeout_ms > 0 else None

        batch: List[RawFrame] = []
        while len(batch) < max_count:
            frames = self._pull(max_count - len(batch), deadline)
            if not frames:
                break
            for frame in frames:
                frame = self._truncate(frame)
                if self._filter is not None and not self._filter.matches(
                        frame.data, frame.link_type, frame.metadata.wire_length):
                    continue
                self._received += 1
                batch.append(frame)
            if deadline is not None and time.monotonic() >= deadline:
                break
        return batch

    def _truncate(self, frame: RawFrame) -> RawFrame:
        if not self.snaplen or len(frame.data) <= self.snaplen:
            return frame
        data = frame.data[:self.snaplen]
        return replace(frame, data=data,
                       metadata=replace(frame.metadata, captured_length=len(data)))

    def stats(self) -> CaptureStats:
        return CaptureStats(received=self._received)

    def close(self) -> None:
        if self._filter is not None:
            self._filter.close()
            self._filter = None
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
