"""
BPF capture filters.

Expressions are compiled by libpcap through scapy's ``compile_filter``,
so the full tcpdump filter language is accepted. Live captures hand the
expression to the sniffer and the kernel filters; replay files and
externally supplied handles run the compiled program on each frame with
libpcap's ``pcap_offline_filter``.

A BPF program is specific to a link type; programs are compiled on
first use for every link type a source yields.
"""
import ctypes
import ctypes.util
import logging
from typing import Dict, Optional

from scapy.arch.common import compile_filter
from scapy.error import Scapy_Exception

from ..exceptions import FilterError

logger = logging.getLogger(__name__)

_offline_filter = None


def _libpcap():
    """Bind ``pcap_offline_filter`` from the libpcap scapy loads."""
    global _offline_filter
    if _offline_filter is None:
        try:
            from scapy.libs.winpcapy import pcap_pkthdr
        except OSError as e:
            raise FilterError(f"libpcap is not available: {e}") from e
        from scapy.libs.structures import bpf_program

        lib = ctypes.CDLL(ctypes.util.find_library("pcap"))
        func = lib.pcap_offline_filter
        func.restype = ctypes.c_int
        func.argtypes = [ctypes.POINTER(bpf_program), ctypes.POINTER(pcap_pkthdr),
                         ctypes.c_char_p]
        _offline_filter = (func, pcap_pkthdr)
    return _offline_filter


def bpf_available() -> bool:
    """True when libpcap can be loaded to compile and run filters."""
    try:
        _libpcap()
    except FilterError:
        return False
    return True


def compile_program(expression: str, link_type: Optional[int] = None,
                    iface: Optional[str] = None):
    """Compile ``expression`` for a link type (or an interface); raises FilterError."""
    try:
        return compile_filter(expression, iface=iface, linktype=link_type)
    except (Scapy_Exception, ImportError, OSError) as e:
        raise FilterError(f"Invalid capture filter {expression!r}: {e}") from e


def free_program(program) -> None:
    from scapy.libs.winpcapy import pcap_freecode
    pcap_freecode(ctypes.byref(program))


def validate(expression: str, link_type: Optional[int] = None,
             iface: Optional[str] = None) -> None:
    free_program(compile_program(expression, link_type, iface))


class BpfFilter:
    """A filter expression with one compiled program per link type."""

    def __init__(self, expression: str, link_type: int):
        self.expression = expression
        self._programs: Dict[int, object] = {}
        self._rejected = set()
        self._run, self._header_type = _libpcap()
        self._programs[link_type] = compile_program(expression, link_type)
        logger.debug("Compiled filter %r for link type %d", expression, link_type)

    def _program(self, link_type: int):
        program = self._programs.get(link_type)
        if program is None and link_type not in self._rejected:
            try:
                program = compile_program(self.expression, link_type)
            except FilterError as e:
                logger.warning("Filter %r does not apply to link type %d, frames dropped: %s",
                               self.expression, link_type, e)
                self._rejected.add(link_type)
                return None
            self._programs[link_type] = program
        return program

    def matches(self, data: bytes, link_type: int, wire_length: Optional[int] = None) -> bool:
        program = self._program(link_type)
        if program is None:
            return False
        header = self._header_type()
        header.caplen = len(data)
        header.len = wire_length or len(data)
        return self._run(ctypes.byref(program), ctypes.byref(header), data) != 0

    def close(self) -> None:
        """Free the compiled programs. Safe to call multiple times."""
        for program in self._programs.values():
            free_program(program)
        self._programs.clear()
