"""CLI command printing one line per classified frame."""
import click
from typing import Optional

from ..config import DEFAULT_BYTES_TO_CAPTURE, DEFAULT_PACKETS_PER_LOOP, REPLAY_PREFIX
from ..exceptions import PcapEasyError
from ..models.frame import IPv4Packet, ArpPacket, TcpSegment, UdpDatagram, IcmpMessage
from ..models.keys import Key
from ..session import PcapSession


def describe(key: Key, nodes) -> str:
    """One-line description of the nodes a handler received."""
    ether = nodes[0]
    parts = [key.value]
    net = next((n for n in nodes if isinstance(n, (IPv4Packet, ArpPacket))), None)
    tr = next((n for n in nodes if isinstance(n, (TcpSegment, UdpDatagram, IcmpMessage))), None)
    if isinstance(net, IPv4Packet):
        src, dst = net.src_ip, net.dst_ip
        if isinstance(tr, (TcpSegment, UdpDatagram)):
            src, dst = f"{src}:{tr.src_port}", f"{dst}:{tr.dst_port}"
        parts.append(f"{src} > {dst}")
        if isinstance(tr, TcpSegment) and tr.flag_names:
            parts.append("[" + ",".join(tr.flag_names) + "]")
        elif isinstance(tr, IcmpMessage):
            parts.append(f"type={tr.type} code={tr.code}")
    elif isinstance(net, ArpPacket):
        parts.append(f"{net.sender_ip} ({net.sender_mac}) > {net.target_ip}")
    else:
        parts.append(f"{ether.src_mac} > {ether.dst_mac} ethertype=0x{ether.ethertype:04x}")
    return " ".join(parts)


def _make_printer(key: Key):
    def _print(session, *args):
        *nodes, meta = args
        stamp = f"{meta.timestamp:.6f}" if meta is not None else "-"
        click.echo(f"{stamp} {describe(key, nodes)}")
    return _print


@click.command()
@click.option("--device", "device", help="Interface to capture on (default: system default)")
@click.option("--file", "replay_file", type=click.Path(exists=True, dir_okay=False),
              help="Replay a pcap/pcapng file instead of a live device")
@click.option("--filter", "filter_expr", help="Capture filter, e.g. 'tcp and port 80'")
@click.option("--count", "count", type=int, default=0, show_default=True,
              help="Stop after N frames (0 = no limit)")
@click.option("--batch", "batch", type=int, default=DEFAULT_PACKETS_PER_LOOP, show_default=True,
              help="Frames per loop")
@click.option("--snaplen", "snaplen", type=int, default=DEFAULT_BYTES_TO_CAPTURE, show_default=True,
              help="Bytes to capture per frame")
@click.option("--timeout", "timeout_ms", type=int, default=1000, show_default=True,
              help="Batch timeout in milliseconds (0 = wait for a full batch)")
@click.option("--promisc", "promisc", is_flag=True, help="Enable promiscuous mode")
def watch(device: Optional[str],
          replay_file: Optional[str],
          filter_expr: Optional[str],
          count: int,
          batch: int,
          snaplen: int,
          timeout_ms: int,
          promisc: bool):
    """
    Print every frame with its classification.

    Example:
      pcapeasy watch --file capture.pcap --filter "icmp or arp"
    """
    if device and replay_file:
        raise click.ClickException("Use either --device or --file")
    if replay_file:
        device = REPLAY_PREFIX + replay_file

    try:
        with PcapSession(
            device=device,
            filter=filter_expr,
            packets_per_loop=batch,
            bytes_to_capture=snaplen,
            timeout_in_ms=timeout_ms,
            promiscuous=promisc,
            callbacks={key: _make_printer(key) for key in Key},
        ) as session:
            seen = 0
            while count <= 0 or seen < count:
                seen += session.run_batch()
                if session.handle.exhausted:
                    break
            stats = session.stats()
    except PcapEasyError as e:
        raise click.ClickException(str(e))

    click.echo(f"# received={stats.received} dropped={stats.dropped_by_engine} "
               f"if_dropped={stats.dropped_by_interface}", err=True)
