"""
DHCP lease value type.

A lease is an immutable assignment of one IPv4 address to one client.
Renewing a lease produces a new instance; the repository replaces the
committed one when the renewal is confirmed.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from dataclasses import dataclass, replace
from typing import Any

from netaddr import EUI, IPAddress

EXPIRATION_NEVER = 2**63 - 1
HOSTNAME_NONE = None


def client_id_to_string(client_id: bytes | None) -> str:
    if client_id is None:
        return "null"
    return client_id.hex().upper()


@dataclass(frozen=True)
class Lease:
    """An IPv4 address assignment done through DHCPv4."""
    client_id: bytes | None
    hw_addr: EUI
    address: IPAddress
    # Compared against the repository clock, in milliseconds
    expiration: int
    hostname: str | None = HOSTNAME_NONE

    def renew(self, expiration: int, hostname: str | None = HOSTNAME_NONE) -> "Lease":
        """
        Push back the expiration time of this lease.

        If the new expiration is not later than the current one, this lease is
        returned as-is. Otherwise the hostname is replaced by the provided one
        when set.
        """
        if expiration <= self.expiration:
            return self
        return replace(
            self,
            expiration=expiration,
            hostname=self.hostname if hostname is None else hostname,
        )

    def matches_client(self, client_id: bytes | None, hw_addr: EUI) -> bool:
        """
        Whether this lease belongs to the given client.

        A client identifier, when the lease has one, is authoritative. The
        hardware address is only used when neither side has a client id, so a
        MAC-only client never picks up a lease created with an identifier.
        """
        if self.client_id is not None:
            return self.client_id == client_id
        return client_id is None and self.hw_addr == hw_addr

    def is_expired(self, now: int) -> bool:
        return self.expiration <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id.hex() if self.client_id is not None else None,
            "hw_addr": str(self.hw_addr),
            "address": str(self.address),
            "expiration": self.expiration if self.expiration != EXPIRATION_NEVER else None,
            "hostname": self.hostname,
        }

    def __str__(self) -> str:
        return (
            f"clientId: {client_id_to_string(self.client_id)}, hwAddr {self.hw_addr}, "
            f"netAddr: {self.address}, expTime: {self.expiration}, hostname: {self.hostname}"
        )
