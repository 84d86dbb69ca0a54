import logging

import pytest

from pcapeasy import PcapSession
from pcapeasy.config import CaptureConfig
from pcapeasy.exceptions import (
    CaptureError,
    ConfigError,
    DecodeError,
    FilterError,
    SessionClosedError,
)
from pcapeasy.models import Key

from conftest import (
    FakeHandle,
    arp_frame,
    ethernet,
    icmp_frame,
    ipv4,
    requires_bpf,
    tcp_frame,
    truncated_ip_frame,
    udp_frame,
)


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


def test_replay_batches_then_end_of_source(pcap_file):
    path = pcap_file([tcp_frame(), udp_frame(), icmp_frame(8), arp_frame(1),
                      tcp_frame(dst_port=22), udp_frame(dst_port=123)])
    with PcapSession(device="file:" + path, packets_per_loop=3) as session:
        assert session.run_batch() == 3
        assert session.run_batch() == 3
        assert session.run_batch() == 0
        assert session.handle.exhausted
        assert session.stats().received == 6
        assert session.stats().dropped_by_engine == 0
        assert session.counters["processed"] == 6


def test_plain_capture_file_path_is_replayed(pcap_file):
    path = pcap_file([udp_frame()])
    handler = Recorder()
    with PcapSession(device=path, udp_callback=handler) as session:
        assert session.device == path
        session.drain()
    assert len(handler.calls) == 1


def test_handlers_receive_frames_in_order(pcap_file):
    path = pcap_file([tcp_frame(dst_port=1), tcp_frame(dst_port=2), tcp_frame(dst_port=3)])
    handler = Recorder()
    with PcapSession(device="file:" + path, tcp_callback=handler) as session:
        assert session.drain() == 3
        assert session.counters["dispatched"] == 3
    assert [args[3].dst_port for args in handler.calls] == [1, 2, 3]
    session_arg, ether, ip, tcp, meta = handler.calls[0]
    assert session_arg is session
    assert meta.timestamp_sec == 1_700_000_000
    assert meta.timestamp_usec == 500


def test_nanosecond_capture_timestamps(pcap_file):
    path = pcap_file([(udp_frame(), 1_700_000_123, 123_456_789)], nanosecond=True)
    handler = Recorder()
    with PcapSession(device="file:" + path, udp_callback=handler) as session:
        session.drain()
    meta = handler.calls[0][-1]
    assert (meta.timestamp_sec, meta.timestamp_usec) == (1_700_000_123, 123_456)


def test_default_batch_size_when_zero(pcap_file):
    path = pcap_file([udp_frame()] * 40)
    with PcapSession(device="file:" + path, packets_per_loop=0) as session:
        assert session.config.packets_per_loop == 32
        assert session.run_batch() == 32
        assert session.run_batch() == 8


def test_snaplen_floor_truncates_replay(pcap_file):
    big = tcp_frame(payload=b"x" * 346)
    assert len(big) == 400
    path = pcap_file([big])
    handler = Recorder()
    with PcapSession(device="file:" + path, bytes_to_capture=100, tcp_callback=handler) as session:
        assert session.config.bytes_to_capture == 256
        session.drain()
    meta = handler.calls[0][-1]
    assert meta.captured_length == 256
    assert meta.wire_length == 400
    assert meta.is_truncated


def test_decode_errors_are_counted_and_reported(caplog):
    errors = Recorder()
    tcp_handler, udp_handler = Recorder(), Recorder()
    handle = FakeHandle([tcp_frame(), truncated_ip_frame(), udp_frame()])
    session = PcapSession(handle=handle, tcp_callback=tcp_handler, udp_callback=udp_handler,
                          decode_error_callback=errors)

    with caplog.at_level(logging.WARNING, logger="pcapeasy.session"):
        assert session.run_batch() == 3

    assert session.counters == {"processed": 3, "decode_errors": 1, "dispatched": 2}
    assert len(tcp_handler.calls) == 1
    assert len(udp_handler.calls) == 1
    (args,) = errors.calls
    assert args[0] is session
    assert isinstance(args[1], DecodeError)
    assert args[1].layer == "ipv4"
    assert args[2].frame_id == 2
    assert "not decoded" in caplog.text
    session.close()


def test_decode_error_logging_can_be_disabled(caplog):
    session = PcapSession(handle=FakeHandle([truncated_ip_frame()]), log_decode_errors=False)
    with caplog.at_level(logging.WARNING, logger="pcapeasy.session"):
        session.run_batch()
    assert session.counters["decode_errors"] == 1
    assert "not decoded" not in caplog.text


def test_raw_mode_bypasses_dispatch():
    raw, tcp_handler = Recorder(), Recorder()
    frames = [tcp_frame(), truncated_ip_frame()]
    with PcapSession(handle=FakeHandle(frames), raw_callback=raw, tcp_callback=tcp_handler) as session:
        assert session.run_batch() is None
        assert session.drain() is None
    assert tcp_handler.calls == []
    assert [args[1] for args in raw.calls] == frames
    assert raw.calls[0][2].wire_length == len(frames[0])


@requires_bpf
def test_filter_limits_received_frames(pcap_file):
    path = pcap_file([tcp_frame(), udp_frame(), tcp_frame(dst_port=443), arp_frame(1)])
    default = Recorder()
    with PcapSession(device="file:" + path, filter="tcp", default_callback=default) as session:
        assert session.drain() == 2
        assert session.stats().received == 2
    assert len(default.calls) == 2


@requires_bpf
def test_filter_on_external_handle():
    handle = FakeHandle([tcp_frame(dst_port=80), tcp_frame(dst_port=22), truncated_ip_frame()])
    with PcapSession(handle=handle, filter="port 22") as session:
        assert session.run_batch() == 1
        assert handle.filter_expression == "port 22"


def test_bad_filter_raises_and_leaves_external_handle_open():
    handle = FakeHandle([tcp_frame()])
    with pytest.raises(FilterError):
        PcapSession(handle=handle, filter="tcp and")
    assert handle.close_calls == 0
    assert not handle.closed


def test_bad_filter_on_replay(pcap_file):
    path = pcap_file([tcp_frame()])
    with pytest.raises(FilterError):
        PcapSession(device="file:" + path, filter="tcp and and")


def test_close_is_idempotent_and_final(pcap_file):
    session = PcapSession(device="file:" + pcap_file([tcp_frame()]))
    session.close()
    session.close()
    assert session.closed
    with pytest.raises(SessionClosedError):
        session.run_batch()
    with pytest.raises(SessionClosedError):
        session.stats()
    with pytest.raises(SessionClosedError):
        session.open()


def test_external_handle_is_borrowed():
    handle = FakeHandle([udp_frame()])
    with PcapSession(handle=handle) as session:
        assert session.device == "fake0"
        session.drain()
    assert handle.close_calls == 0
    assert not handle.closed


def test_capture_error_propagates():
    handle = FakeHandle([udp_frame()] * 5, fail_after=2)
    with PcapSession(handle=handle, packets_per_loop=2) as session:
        assert session.run_batch() == 2
        with pytest.raises(CaptureError, match="device went away"):
            session.run_batch()


def test_handler_exceptions_propagate():
    def boom(*args):
        raise RuntimeError("handler failed")

    with PcapSession(handle=FakeHandle([tcp_frame()]), tcp_callback=boom) as session:
        with pytest.raises(RuntimeError, match="handler failed"):
            session.run_batch()


def test_frames_after_a_failing_handler_are_handled_next_batch():
    seen = []

    def flaky(session, ether, ip, tcp, meta):
        seen.append(tcp.dst_port)
        if len(seen) == 1:
            raise RuntimeError("handler failed")

    handle = FakeHandle([tcp_frame(dst_port=1), tcp_frame(dst_port=2), tcp_frame(dst_port=3)])
    with PcapSession(handle=handle, tcp_callback=flaky, packets_per_loop=3) as session:
        with pytest.raises(RuntimeError):
            session.run_batch()
        assert session.run_batch() == 2
        assert session.run_batch() == 0
    assert seen == [1, 2, 3]
    assert session.counters["processed"] == 3


def test_drain_finishes_pending_frames_in_raw_mode():
    seen = []

    def raw(session, data, meta):
        seen.append(data)
        if len(seen) == 1:
            raise RuntimeError("raw handler failed")

    frames = [tcp_frame(), udp_frame()]
    with PcapSession(handle=FakeHandle(frames), raw_callback=raw) as session:
        with pytest.raises(RuntimeError):
            session.run_batch()
        assert session.handle.exhausted
        assert session.drain() is None
    assert seen == frames


@pytest.mark.parametrize("proto", [6, 17, 1, 2])
def test_malformed_transport_header_reaches_ipv4_handler(proto):
    ip_handler, default = Recorder(), Recorder()
    short = ethernet(ipv4(b"\x00" * 3, proto=proto))
    with PcapSession(handle=FakeHandle([short]), ipv4_callback=ip_handler,
                     default_callback=default) as session:
        assert session.run_batch() == 1
        assert session.counters == {"processed": 1, "decode_errors": 0, "dispatched": 1}
    (args,) = ip_handler.calls
    assert args[2].protocol == proto
    assert default.calls == []


def test_malformed_tcp_header_falls_back_to_default_handler():
    default = Recorder()
    short = ethernet(ipv4(b"\x00" * 10, proto=6))
    with PcapSession(handle=FakeHandle([short]), default_callback=default) as session:
        session.run_batch()
    assert len(default.calls) == 1


@requires_bpf
def test_filtered_frames_are_decoded_once():
    handle = FakeHandle([tcp_frame(), udp_frame(), tcp_frame(dst_port=22)])
    with PcapSession(handle=handle, filter="tcp", tcp_callback=Recorder()) as session:
        decode_raw = session.decoder.decode_raw
        decoded = []

        def counting(frame):
            decoded.append(frame.frame_id)
            return decode_raw(frame)

        session.decoder.decode_raw = counting
        session.drain()
        assert decoded == [1, 3]
        assert session.counters["dispatched"] == 2


def test_missing_replay_file_is_capture_error(tmp_path):
    with pytest.raises(CaptureError):
        PcapSession(device="file:" + str(tmp_path / "nope.pcap"))


def test_network_info_unknown_for_replay(pcap_file):
    with PcapSession(device="file:" + pcap_file([tcp_frame()])) as session:
        assert session.network() is None
        assert session.netmask() is None
        assert session.cidr() is None
        assert session.is_local("10.0.0.1") is None
        assert session.link_type == 1


def test_config_object_and_options_are_exclusive():
    with pytest.raises(ConfigError):
        PcapSession(CaptureConfig(), packets_per_loop=4)


def test_config_object_accepted():
    handler = Recorder()
    config = CaptureConfig(handle=FakeHandle([icmp_frame(0)]), callbacks={Key.ICMP: handler})
    with PcapSession(config) as session:
        assert session.loop() == 1
    assert handler.calls[0][3].type == 0


def test_registry_is_frozen_once_open():
    with PcapSession(handle=FakeHandle()) as session:
        assert session.registry.frozen
        with pytest.raises(ConfigError):
            session.registry.register(Key.TCP, lambda *a: None)
