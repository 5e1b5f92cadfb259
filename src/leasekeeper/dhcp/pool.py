"""
Address pool definition and candidate address arithmetic.

Addresses are handled as 32-bit integers. The index of an address is its
host part, so that the lowest-order host bits are the low bits of a plain
integer and candidates can be walked with modular arithmetic over the
whole subnet.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from typing import Iterable, Iterator

from netaddr import EUI, IPAddress, IPNetwork

from leasekeeper.ip.core import (
    IPV4_ADDR_BITS,
    mac_bytes,
    prefix_to_netmask,
    to_address,
    to_mac,
    to_network,
)

# Serving a /31 or /32 would leave no address once network and broadcast are excluded
MAX_PREFIX_LENGTH = 30
LAST_BYTE_MASK = 0xFF


class AddressPool:
    """
    Pool state derived from the serving parameters.

    Only checks whether addresses are numerically assignable; which of them
    are in use is tracked by the lease repository.
    """

    def __init__(
        self,
        subnet: "str | IPNetwork",
        reserved: Iterable["str | int | IPAddress"] = (),
        lease_time_ms: int = 3600000,
    ):
        prefix = to_network(subnet)
        if prefix.prefixlen > MAX_PREFIX_LENGTH:
            raise ValueError(
                f"Prefix length /{prefix.prefixlen} leaves no assignable address "
                f"(maximum is /{MAX_PREFIX_LENGTH})"
            )
        if lease_time_ms <= 0:
            raise ValueError(f"Lease time must be positive, got {lease_time_ms}")

        self.prefix: IPNetwork = prefix
        self.reserved: frozenset[IPAddress] = frozenset(to_address(a) for a in reserved)
        self.lease_time_ms = int(lease_time_ms)
        self.subnet_mask = prefix_to_netmask(prefix.prefixlen)
        self.subnet_addr = int(prefix.network) & self.subnet_mask
        self.num_addresses = 1 << (IPV4_ADDR_BITS - prefix.prefixlen)

    def __repr__(self) -> str:
        return (
            f"AddressPool(prefix={self.prefix}, reserved={len(self.reserved)}, "
            f"lease_time_ms={self.lease_time_ms})"
        )

    def contains(self, addr: IPAddress) -> bool:
        return (int(addr) & self.subnet_mask) == self.subnet_addr

    def is_reserved(self, addr: IPAddress) -> bool:
        return addr in self.reserved

    def index_of(self, addr: int) -> int:
        """0-based index of an address in the subnet."""
        return addr & ~self.subnet_mask & 0xFFFFFFFF

    def address_at(self, index: int) -> int:
        return self.subnet_addr | (index % self.num_addresses)

    def valid_address(self, addr: int) -> int:
        """
        Get a valid address starting from the supplied one.

        Only checks that the address is numerically valid for assignment, not
        whether it is in use. The address is assumed to be inside the prefix.
        """
        index = self.index_of(addr)

        # Some stacks do not handle .255 or .0 host addresses correctly
        if self.address_at(index) & LAST_BYTE_MASK == LAST_BYTE_MASK:
            index = (index + 1) % self.num_addresses
        if self.address_at(index) & LAST_BYTE_MASK == 0:
            index = (index + 1) % self.num_addresses

        # Network and broadcast address of the whole subnet.
        # Index 1 is always usable since the prefix length is at most 30.
        if index == 0 or index == self.num_addresses - 1:
            index = 1
        return self.address_at(index)

    def is_valid_address(self, addr: IPAddress) -> bool:
        """Whether the address is in the assignable range. Assumes it is inside the prefix."""
        value = int(addr)
        return self.valid_address(value) == value

    def next_address(self, addr: int) -> int:
        return self.valid_address(self.address_at(self.index_of(addr) + 1))

    def client_seed(self, hw_addr: "str | bytes | EUI") -> int:
        """
        Starting index for a client, hashed from its hardware address.

        Repeated DISCOVERs from the same client tend to get the same offer, and
        clients spread over the pool without any stored state. Bytes are
        summed as signed octets, the way dnsmasq-derived servers do it.
        """
        seed = 0
        for b in mac_bytes(to_mac(hw_addr)):
            if b > 127:
                b -= 256
            seed += b + (b << 8) + (b << 16)
        return (seed & 0xFFFFFFFF) % self.num_addresses

    def first_candidate(self, hw_addr: "str | bytes | EUI") -> IPAddress:
        return IPAddress(self.valid_address(self.address_at(self.client_seed(hw_addr))), 4)

    def candidates(self, hw_addr: "str | bytes | EUI") -> Iterator[IPAddress]:
        """
        Walk the pool from the client's seed, wrapping around.

        Yields at most num_addresses values; there are slightly fewer
        assignable addresses so some may repeat near the end.
        """
        addr = self.valid_address(self.address_at(self.client_seed(hw_addr)))
        for _ in range(self.num_addresses):
            yield IPAddress(addr, 4)
            addr = self.next_address(addr)

    @property
    def assignable_count(self) -> int:
        """Numerically assignable addresses, reserved ones included."""
        if self.prefix.prefixlen >= 24:
            # Only the network and broadcast addresses can end in .0/.255
            return self.num_addresses - 2
        # Every contained /24 loses its .0 and .255
        return self.num_addresses - 2 * (self.num_addresses // 256)

    @property
    def first_assignable(self) -> IPAddress:
        return IPAddress(self.valid_address(self.address_at(1)), 4)

    @property
    def last_assignable(self) -> IPAddress:
        return IPAddress(self.valid_address(self.address_at(self.num_addresses - 2)), 4)
