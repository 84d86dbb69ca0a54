import pytest

from pcapeasy.capture.bpf import BpfFilter, validate
from pcapeasy.capture.protocols import DLT_EN10MB, DLT_RAW
from pcapeasy.exceptions import FilterError

from conftest import FakeHandle, arp_frame, icmp_frame, ipv4, requires_bpf, tcp, tcp_frame, udp_frame


@requires_bpf
@pytest.mark.parametrize("expression", [
    "tcp port 80",
    "ip host 10.0.0.1",
    "tcp dst port 80",
    "portrange 1-1024",
    "ether host aa:bb:cc:dd:ee:ff",
    "host ::1",
    "udp and not port 53",
    "net 10.0.0.0/8",
    "vlan and tcp",
])
def test_tcpdump_expressions_compile(expression):
    validate(expression, link_type=DLT_EN10MB)


@pytest.mark.parametrize("expression", ["tcp and", "tcp and and", "port 99999"])
def test_invalid_expressions_raise(expression):
    with pytest.raises(FilterError):
        validate(expression, link_type=DLT_EN10MB)


@requires_bpf
@pytest.mark.parametrize("expression,expected", [
    ("tcp", [True, False, False, False]),
    ("tcp port 80", [True, False, False, False]),
    ("udp port 53", [False, True, False, False]),
    ("icmp", [False, False, True, False]),
    ("arp", [False, False, False, True]),
    ("ip src host 10.0.0.1", [True, True, True, False]),
    ("ether src aa:bb:cc:dd:ee:ff", [True, True, True, True]),
    ("not ip", [False, False, False, True]),
])
def test_filter_matches_frames(expression, expected):
    frames = [tcp_frame(dst_port=80), udp_frame(dst_port=53), icmp_frame(8), arp_frame(1)]
    bpf = BpfFilter(expression, DLT_EN10MB)
    try:
        assert [bpf.matches(data, DLT_EN10MB) for data in frames] == expected
    finally:
        bpf.close()


@requires_bpf
def test_program_is_compiled_per_link_type():
    bpf = BpfFilter("tcp dst port 22", DLT_EN10MB)
    raw_ip = ipv4(tcp(dst_port=22), proto=6)
    assert bpf.matches(raw_ip, DLT_RAW)
    assert not bpf.matches(ipv4(tcp(dst_port=80), proto=6), DLT_RAW)
    assert bpf.matches(tcp_frame(dst_port=22), DLT_EN10MB)
    bpf.close()


@requires_bpf
def test_link_type_the_filter_cannot_express_drops_frames(caplog):
    bpf = BpfFilter("ether host aa:bb:cc:dd:ee:ff", DLT_EN10MB)
    raw_ip = ipv4(tcp(), proto=6)
    assert not bpf.matches(raw_ip, DLT_RAW)
    assert not bpf.matches(raw_ip, DLT_RAW)
    assert caplog.text.count("does not apply to link type") == 1
    bpf.close()


@requires_bpf
def test_handle_filters_before_counting():
    handle = FakeHandle([tcp_frame(dst_port=80), tcp_frame(dst_port=22), udp_frame(), arp_frame(2)])
    handle.install_filter("tcp port 22 or arp")
    frames = handle.read_batch(10)
    assert [f.frame_id for f in frames] == [2, 4]
    assert handle.stats().received == 2
    assert handle.filter_expression == "tcp port 22 or arp"


@requires_bpf
def test_failed_install_keeps_previous_filter():
    handle = FakeHandle([tcp_frame(), udp_frame()])
    handle.install_filter("udp")
    with pytest.raises(FilterError):
        handle.install_filter("udp and")
    assert handle.filter_expression == "udp"
    assert [f.frame_id for f in handle.read_batch(10)] == [2]


@requires_bpf
def test_blank_expression_removes_filter():
    handle = FakeHandle([tcp_frame(), udp_frame()])
    handle.install_filter("udp")
    handle.install_filter("  ")
    assert handle.filter_expression is None
    assert len(handle.read_batch(10)) == 2
