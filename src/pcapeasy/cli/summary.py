"""CLI command for per-classification frame counts of a capture file."""
import json
from collections import Counter
from typing import Optional

import click

from ..config import REPLAY_PREFIX
from ..exceptions import PcapEasyError
from ..models.keys import Key
from ..session import PcapSession


@click.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--filter", "filter_expr", help="Capture filter applied while replaying")
@click.option("--output", "output", type=click.Path(dir_okay=False),
              help="Write JSON output to file")
def summary(filepath: str, filter_expr: Optional[str], output: Optional[str]):
    """
    Count frames per classification key in a PCAP/PCAPNG file.

    Example:
      pcapeasy summary capture.pcapng --filter "not arp"
    """
    counts: Counter = Counter()

    def _counter(key: Key):
        def _count(session, *args):
            counts[key.value] += 1
        return _count

    try:
        with PcapSession(
            device=REPLAY_PREFIX + filepath,
            filter=filter_expr,
            callbacks={key: _counter(key) for key in Key},
        ) as session:
            session.drain()
            report = {
                "file": filepath,
                "frames": session.counters["processed"],
                "decode_errors": session.counters["decode_errors"],
                "keys": dict(sorted(counts.items())),
                "stats": session.stats().as_dict(),
            }
    except PcapEasyError as e:
        raise click.ClickException(str(e))

    payload = json.dumps(report, indent=2)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(payload)
    else:
        click.echo(payload)
