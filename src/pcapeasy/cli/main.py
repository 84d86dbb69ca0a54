"""pcapeasy command line entry point."""
import logging

import click

from .watch import watch
from .summary import summary


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
def cli(verbose: bool, quiet: bool):
    """Classify captured frames and route them to handlers."""
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command()
def interfaces():
    """List capture interfaces."""
    from ..capture.scapy_backend import list_interfaces

    for iface in list_interfaces():
        click.echo(f"{iface['name']}\t{iface['ip'] or '-'}\t{iface['mac'] or '-'}")


cli.add_command(watch)
cli.add_command(summary)


def main():
    cli()


if __name__ == "__main__":
    main()
