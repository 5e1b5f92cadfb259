"""
DHCPv4 lease allocation module.

Provides the lease repository that decides which address to offer or
confirm for each client, the address pool arithmetic behind it, and a
dispatcher mapping decoded client messages onto repository operations.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from leasekeeper.dhcp.clock import Clock, ManualClock, MonotonicClock
from leasekeeper.dhcp.exceptions import InvalidAddressError, LeaseError, OutOfAddressesError
from leasekeeper.dhcp.handler import (
    ClientMessage,
    DHCPMessageType,
    LeaseRequestHandler,
    ServerReply,
)
from leasekeeper.dhcp.lease import EXPIRATION_NEVER, Lease
from leasekeeper.dhcp.pool import AddressPool
from leasekeeper.dhcp.repository import LeaseRepository

__all__ = [
    "AddressPool",
    "ClientMessage",
    "Clock",
    "DHCPMessageType",
    "EXPIRATION_NEVER",
    "InvalidAddressError",
    "Lease",
    "LeaseError",
    "LeaseRepository",
    "LeaseRequestHandler",
    "ManualClock",
    "MonotonicClock",
    "OutOfAddressesError",
    "ServerReply",
]
