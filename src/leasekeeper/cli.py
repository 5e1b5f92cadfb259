"""
LeaseKeeper command line entry point.
"""

import click

from leasekeeper import __version__
from leasekeeper.config import get_config
from leasekeeper.dhcp.cli import dhcp
from leasekeeper.logging_config import configure_logging, get_logger


@click.group()
@click.version_option(__version__, prog_name="leasekeeper")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
def cli(debug: bool, log_file: str | None):
    """LeaseKeeper - DHCPv4 lease allocation engine.

    Serving parameters default to the LEASEKEEPER_SUBNET,
    LEASEKEEPER_RESERVED and LEASEKEEPER_LEASE_TIME_MS environment
    variables, or a .env file in ~/.leasekeeper or the current directory.
    """
    try:
        config = get_config()
        configure_logging(debug=debug, log_file=log_file, level=config.log_level)
    except ValueError as e:
        raise click.UsageError(str(e))
    get_logger(__name__).debug(f"Using configuration {config}")


cli.add_command(dhcp)


def main():
    cli()


if __name__ == "__main__":
    main()
