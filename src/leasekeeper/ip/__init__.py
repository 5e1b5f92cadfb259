"""
IPv4 Tools Module

Provides address coercion helpers and subnet calculations shared by the
lease engine and its command line.
"""

from leasekeeper.ip.core import (
    IPV4_ADDR_BITS,
    UNSPECIFIED_ADDRESS,
    SubnetCalculator,
    SubnetInfo,
    calculate_subnet,
    is_unspecified,
    mac_bytes,
    prefix_to_netmask,
    to_address,
    to_mac,
    to_network,
)

__all__ = [
    "IPV4_ADDR_BITS",
    "UNSPECIFIED_ADDRESS",
    "SubnetCalculator",
    "SubnetInfo",
    "calculate_subnet",
    "is_unspecified",
    "mac_bytes",
    "prefix_to_netmask",
    "to_address",
    "to_mac",
    "to_network",
]
