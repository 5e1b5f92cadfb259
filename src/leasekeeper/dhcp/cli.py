"""
CLI commands for the lease allocation engine.

Provides pool inspection, per-client seed lookup, and offline replay of
client message scenarios against an in-memory repository.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from leasekeeper.config import get_config
from leasekeeper.dhcp.clock import ManualClock
from leasekeeper.dhcp.exceptions import LeaseError
from leasekeeper.dhcp.handler import ClientMessage, LeaseRequestHandler, ServerReply
from leasekeeper.dhcp.lease import Lease
from leasekeeper.dhcp.pool import AddressPool
from leasekeeper.dhcp.repository import LeaseRepository
from leasekeeper.ip.core import calculate_subnet

console = Console()


@click.group()
def dhcp():
    """DHCPv4 lease allocation tools.

    \b
    Examples:
        # Show the assignable range of a subnet
        leasekeeper dhcp pool 192.168.1.0/24

        # Which address would this client be offered first?
        leasekeeper dhcp seed aa:bb:cc:dd:ee:ff --subnet 192.168.1.0/24

        # Run a scenario of client messages through the engine
        leasekeeper dhcp replay scenario.json
    """
    pass


def fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def display_leases(leases: list[Lease], title: str = "Committed Leases"):
    """Display a table of leases."""
    table = Table(title=title)
    table.add_column("Address", style="cyan")
    table.add_column("Hardware Address")
    table.add_column("Client ID")
    table.add_column("Hostname")
    table.add_column("Expires (ms)", justify="right")

    for lease in sorted(leases, key=lambda l: int(l.address)):
        table.add_row(
            str(lease.address),
            str(lease.hw_addr),
            lease.client_id.hex() if lease.client_id is not None else "-",
            lease.hostname or "-",
            str(lease.expiration),
        )

    console.print(table)


@dhcp.command()
@click.argument("cidr", required=False)
@click.option("--reserved", "-r", multiple=True, help="Reserved address (repeatable)")
@click.option("--json-output", "json_out", is_flag=True, help="Output as JSON")
def pool(cidr: str | None, reserved: tuple[str, ...], json_out: bool):
    """Show the assignable address range of a subnet.

    Uses the configured subnet when CIDR is omitted. Addresses ending in
    .0 or .255 are never assigned, nor are the network and broadcast
    addresses of the subnet.

    \b
    Examples:
        leasekeeper dhcp pool 192.168.1.0/24
        leasekeeper dhcp pool 10.0.0.0/23 -r 10.0.0.1 -r 10.0.0.2
    """
    config = get_config()
    cidr = cidr or config.subnet
    reserved_addrs = list(reserved) if reserved else config.reserved

    try:
        address_pool = AddressPool(cidr, reserved_addrs, config.lease_time_ms)
        subnet = calculate_subnet(cidr)
    except ValueError as e:
        fail(str(e))

    reserved_inside = sorted(
        (a for a in address_pool.reserved if address_pool.contains(a)), key=int
    )
    if json_out:
        click.echo(json.dumps({
            "network": subnet.network,
            "broadcast": subnet.broadcast,
            "netmask": subnet.netmask,
            "prefix_length": subnet.prefix_length,
            "num_addresses": subnet.num_addresses,
            "assignable": address_pool.assignable_count,
            "first_assignable": str(address_pool.first_assignable),
            "last_assignable": str(address_pool.last_assignable),
            "reserved": [str(a) for a in reserved_inside],
        }, indent=2))
        return

    table = Table(title=f"Address Pool: {cidr}", show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Network", subnet.network)
    table.add_row("Broadcast", subnet.broadcast or "N/A")
    table.add_row("Netmask", subnet.netmask)
    table.add_row("Prefix Length", f"/{subnet.prefix_length}")
    table.add_row("Total Addresses", f"{subnet.num_addresses:,}")
    table.add_row("Assignable", f"{address_pool.assignable_count:,}")
    table.add_row("First Assignable", str(address_pool.first_assignable))
    table.add_row("Last Assignable", str(address_pool.last_assignable))
    if reserved_inside:
        table.add_row("Reserved", ", ".join(str(a) for a in reserved_inside))

    console.print(table)


@dhcp.command()
@click.argument("mac")
@click.option("--subnet", "-s", help="Subnet in CIDR notation (default: configured subnet)")
@click.option("--json-output", "json_out", is_flag=True, help="Output as JSON")
def seed(mac: str, subnet: str | None, json_out: bool):
    """Show the first address tried for a client.

    The starting point is hashed from the hardware address, so a client
    keeps getting the same offer until it is taken by someone else.

    \b
    Examples:
        leasekeeper dhcp seed aa:bb:cc:dd:ee:ff
        leasekeeper dhcp seed 02:00:00:00:00:01 --subnet 10.0.0.0/16
    """
    config = get_config()
    try:
        address_pool = AddressPool(subnet or config.subnet, (), config.lease_time_ms)
        index = address_pool.client_seed(mac)
        candidate = address_pool.first_candidate(mac)
    except ValueError as e:
        fail(str(e))

    if json_out:
        click.echo(json.dumps({
            "mac": mac,
            "subnet": str(address_pool.prefix),
            "seed_index": index,
            "address": str(candidate),
        }, indent=2))
        return

    console.print(
        f"[cyan]{mac}[/cyan] in {address_pool.prefix}: "
        f"seed index {index}, first candidate [green]{candidate}[/green]"
    )


def load_scenario(path: Path) -> dict[str, Any]:
    """Load and sanity check a replay scenario file."""
    try:
        scenario = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(scenario, dict) or not isinstance(scenario.get("events"), list):
        raise ValueError(f"{path}: expected an object with an 'events' list")
    for i, event in enumerate(scenario["events"]):
        if not isinstance(event, dict):
            raise ValueError(f"{path}: event {i} is not an object")
    return scenario


def run_scenario(
    scenario: dict[str, Any],
    default_subnet: str,
    default_lease_time_ms: int,
) -> tuple[list[dict[str, Any]], LeaseRepository]:
    """Replay scenario events, returning one result row per event and the final repository."""
    clock = ManualClock()
    repo = LeaseRepository(
        scenario.get("subnet", default_subnet),
        scenario.get("reserved", []),
        scenario.get("lease_time_ms", default_lease_time_ms),
        clock=clock,
    )
    handler = LeaseRequestHandler(repo)

    results = []
    for event in scenario["events"]:
        clock.set(int(event.get("at", clock.now_ms)))
        message = ClientMessage.from_dict(event)
        reply: ServerReply | None = handler.handle(message)
        results.append({
            "at": clock.now_ms,
            "message": message.message_type.name,
            "mac": str(message.hw_addr),
            "reply": reply.to_dict() if reply else None,
        })
    return results, repo


@dhcp.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json-output", "json_out", is_flag=True, help="Output as JSON")
def replay(scenario_file: Path, json_out: bool):
    """Replay client messages from a JSON scenario.

    The file holds optional pool parameters and a list of events, each a
    client message with a timestamp in milliseconds:

    \b
        {
          "subnet": "192.168.1.0/24",
          "lease_time_ms": 3600000,
          "events": [
            {"at": 0, "type": "discover", "mac": "aa:bb:cc:dd:ee:ff"},
            {"at": 10, "type": "request", "mac": "aa:bb:cc:dd:ee:ff",
             "requested": "192.168.1.251", "server_id": true}
          ]
        }

    \b
    Examples:
        leasekeeper dhcp replay scenario.json
        leasekeeper dhcp replay scenario.json --json-output
    """
    config = get_config()
    try:
        scenario = load_scenario(scenario_file)
        results, repo = run_scenario(scenario, config.subnet, config.lease_time_ms)
    except (KeyError, ValueError, LeaseError) as e:
        fail(str(e))

    committed = repo.get_committed_leases()
    declined = sorted(repo.get_declined_addresses(), key=int)

    if json_out:
        click.echo(json.dumps({
            "results": results,
            "committed": [lease.to_dict() for lease in committed],
            "declined": [str(a) for a in declined],
        }, indent=2))
        return

    table = Table(title=f"Replay: {scenario_file.name}")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Message", style="cyan")
    table.add_column("Client")
    table.add_column("Reply")
    table.add_column("Address / Reason")

    for row in results:
        reply = row["reply"]
        if reply is None:
            reply_text, detail = "[dim]none[/dim]", ""
        elif reply["type"] == "NAK":
            reply_text, detail = "[red]NAK[/red]", reply["reason"] or ""
        else:
            reply_text, detail = f"[green]{reply['type']}[/green]", reply["lease"]["address"]
        table.add_row(str(row["at"]), row["message"], row["mac"], reply_text, detail)

    console.print(table)
    console.print()
    display_leases(committed)
    if declined:
        console.print(f"[yellow]Declined:[/yellow] {', '.join(str(a) for a in declined)}")
