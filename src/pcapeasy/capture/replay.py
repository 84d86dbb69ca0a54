"""
Replay capture handle: frames from a recorded pcap/pcapng file.
"""
import logging
from typing import Iterator, List, Optional

from ..exceptions import CaptureError
from ..models.frame import RawFrame
from ..pcap_loader import open_reader
from .handle import CaptureHandle

logger = logging.getLogger(__name__)


class ReplayHandle(CaptureHandle):
    """Reads frames from a capture file; never blocks, ignores timeouts."""

    def __init__(self, filepath: str, snaplen: Optional[int] = None):
        super().__init__(snaplen=snaplen)
        self.source = filepath
        try:
            self._reader = open_reader(filepath)
        except OSError as e:
            raise CaptureError(f"Failed to open replay file {filepath}: {e}") from e
        info = self._reader.get_source_info()
        link_types = info.get('link_types') or [1]
        self.link_type = link_types[0]
        self._frames: Iterator[RawFrame] = iter(self._reader)
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _pull(self, max_count: int, deadline: Optional[float]) -> List[RawFrame]:
        frames: List[RawFrame] = []
        if self._exhausted:
            return frames
        for frame in self._frames:
            frames.append(frame)
            if len(frames) >= max_count:
                break
        else:
            self._exhausted = True
            logger.debug("Replay source %s exhausted", self.source)
        return frames

    def close(self) -> None:
        if not self._closed:
            self._reader.close()
        super().close()
