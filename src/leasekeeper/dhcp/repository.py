"""
Repository managing IPv4 address assignments through DHCPv4.

Implements the server side decisions of RFC 2131: which address to offer
for a DHCPDISCOVER (#4.3.1), and whether a DHCPREQUEST can be confirmed in
the SELECTING, INIT-REBOOT and RENEWING/REBINDING client states (#4.3.2).

The repository does no I/O and is not thread-safe. All public methods must
be called from a common thread or under an external lock, and failing calls
leave the committed state unchanged.

Methods are optimized for a small number of allocated leases, which is the
common case. Large pools are supported but slower.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from typing import TYPE_CHECKING, Iterable

from netaddr import EUI, IPAddress, IPNetwork

from leasekeeper.dhcp.clock import Clock, MonotonicClock
from leasekeeper.dhcp.exceptions import InvalidAddressError, OutOfAddressesError
from leasekeeper.dhcp.lease import EXPIRATION_NEVER, Lease
from leasekeeper.dhcp.pool import AddressPool
from leasekeeper.ip.core import is_unspecified, to_address, to_mac

if TYPE_CHECKING:
    from leasekeeper.config import PoolConfig

logger = logging.getLogger(__name__)


class LeaseRepository:
    """
    In-memory lease store and address allocator for one subnet.

    Usage:
        repo = LeaseRepository("192.168.1.0/24", reserved=["192.168.1.1"])
        offer = repo.offer(None, "aa:bb:cc:dd:ee:ff", "0.0.0.0")
        lease = repo.request_lease(
            None, "aa:bb:cc:dd:ee:ff", "0.0.0.0", offer.address, server_id_set=True
        )
    """

    def __init__(
        self,
        subnet: "str | IPNetwork",
        reserved: Iterable["str | int | IPAddress"] = (),
        lease_time_ms: int = 3600000,
        clock: Clock | None = None,
    ):
        self._clock = clock or MonotonicClock()

        # Leases by address
        self._committed: dict[IPAddress, Lease] = {}
        # Declined address -> expiration. Addresses are inside the subnet but
        # not necessarily assignable. Insertion order is the recycling order.
        self._declined: dict[IPAddress, int] = {}
        # Never later than the first expiration in either map. Only needs
        # updating when entries are added or extended.
        self._next_expiration_check = EXPIRATION_NEVER

        self.update_params(subnet, reserved, lease_time_ms)

    @classmethod
    def from_config(cls, config: "PoolConfig", clock: Clock | None = None) -> "LeaseRepository":
        return cls(config.subnet, config.reserved, config.lease_time_ms, clock=clock)

    @property
    def pool(self) -> AddressPool:
        return self._pool

    @property
    def next_expiration_check(self) -> int:
        return self._next_expiration_check

    def update_params(
        self,
        subnet: "str | IPNetwork",
        reserved: Iterable["str | int | IPAddress"],
        lease_time_ms: int,
    ) -> None:
        """
        Replace the serving parameters.

        Committed leases and declined addresses that fall outside the new
        subnet, or are now reserved, are dropped.
        """
        pool = AddressPool(subnet, reserved, lease_time_ms)
        self._pool = pool

        for addr in [a for a in self._committed if self._out_of_pool(a)]:
            lease = self._committed.pop(addr)
            logger.info(f"Dropping lease no longer in pool: {lease}")
        for addr in [a for a in self._declined if self._out_of_pool(a)]:
            del self._declined[addr]

        logger.debug(f"Serving parameters updated: {pool!r}")

    def _out_of_pool(self, addr: IPAddress) -> bool:
        return not self._pool.contains(addr) or self._pool.is_reserved(addr)

    def offer(
        self,
        client_id: bytes | None,
        hw_addr: "str | bytes | EUI",
        src_addr: "str | int | IPAddress | None",
        relay_addr: "str | int | IPAddress | None" = None,
        req_addr: "str | int | IPAddress | None" = None,
        hostname: str | None = None,
    ) -> Lease:
        """
        Get a DHCP offer, to reply to a DHCPDISCOVER. Follows RFC2131 #4.3.1.

        The returned lease is not committed: offers only become leases once the
        client sends a DHCPREQUEST.

        Args:
            client_id: Client identifier option, or None
            hw_addr: Client hardware address
            src_addr: Source address of the packet
            relay_addr: Address of the relay (giaddr), or None
            req_addr: Address requested by the client (option 50), or None
            hostname: Client-provided hostname, or None

        Raises:
            OutOfAddressesError: No address is available for the client
            InvalidAddressError: The lease was requested from an unsupported subnet
        """
        hw_addr = to_mac(hw_addr)
        src = _optional_address(src_addr)
        relay = _optional_address(relay_addr)
        requested = _optional_address(req_addr)

        current_time = self._clock.elapsed_ms()
        exp_time = current_time + self._pool.lease_time_ms

        self._remove_expired(current_time)

        current = self._find_by_client(client_id, hw_addr)
        if current is not None:
            extended = current.renew(exp_time, hostname)
            logger.debug(f"Offering extended lease {extended}")
            return extended

        if (
            requested is not None
            and self._pool.contains(requested)
            and self._pool.is_valid_address(requested)
            and self._is_available(requested)
        ):
            lease = Lease(client_id, hw_addr, requested, exp_time, hostname)
            logger.debug(f"Offering requested lease {lease}")
            return lease

        # Addresses are assigned based on the relay address if present, or the
        # DISCOVER source subnet, and only inside the configured subnet.
        if not is_unspecified(src) and not self._pool.contains(src):
            raise InvalidAddressError("Lease requested from outside of subnet")
        if not is_unspecified(relay) and not self._pool.contains(relay):
            raise InvalidAddressError("Lease requested by relay from outside of subnet")

        lease = self._make_new_offer(client_id, hw_addr, exp_time, hostname)
        logger.debug(f"Offering new generated lease {lease}")
        return lease

    def request_lease(
        self,
        client_id: bytes | None,
        hw_addr: "str | bytes | EUI",
        client_addr: "str | int | IPAddress | None",
        req_addr: "str | int | IPAddress | None" = None,
        server_id_set: bool = False,
        hostname: str | None = None,
    ) -> Lease:
        """
        Request a lease (DHCPREQUEST). Follows RFC2131 #4.3.2.

        Args:
            client_id: Client identifier option, or None
            hw_addr: Client hardware address
            client_addr: Client address (ciaddr / packet source)
            req_addr: Address requested by the client (option 50), or None
            server_id_set: Whether the server identifier option was present
            hostname: Client-provided hostname, or None

        Raises:
            InvalidAddressError: The client cannot have the requested address
        """
        hw_addr = to_mac(hw_addr)
        client = _optional_address(client_addr)
        requested = _optional_address(req_addr)

        current_time = self._clock.elapsed_ms()
        self._remove_expired(current_time)
        assigned = self._find_by_client(client_id, hw_addr)

        if requested is not None:
            if server_id_set:
                # SELECTING: the client picked an offer, drop whatever it had before
                logger.debug(f"DHCPREQUEST-SELECTING: making lease for {requested}")
                lease = self._check_client_and_make_lease(
                    client_id, hw_addr, requested, hostname, current_time, dropping=assigned,
                )
                if assigned is not None:
                    self._committed.pop(assigned.address, None)
                self._commit_lease(lease)
                return lease

            # INIT-REBOOT: verifying previously cached configuration
            if assigned is not None and assigned.address != requested:
                raise InvalidAddressError("Incorrect address for client in INIT-REBOOT state")

            # RFC2131 says not to reply when there is no record of the client.
            # Confirming the address when it is free instead lets clients keep
            # working if the lease database was lost.
            logger.debug(f"DHCPREQUEST-INITREBOOT: create/renew lease for {requested}")
            lease = self._check_client_and_make_lease(
                client_id, hw_addr, requested, hostname, current_time,
            )
            self._commit_lease(lease)
            return lease

        # RENEWING or REBINDING
        if client is None:
            raise InvalidAddressError("No client address for client in RENEWING/REBINDING state")
        if assigned is not None and assigned.address != client:
            raise InvalidAddressError("Incorrect address for client in RENEWING/REBINDING state")

        # The database might have been lost: create the lease when possible
        logger.debug(f"DHCPREQUEST-RENEWREBIND: create/renew lease for {client}")
        lease = self._check_client_and_make_lease(
            client_id, hw_addr, client, hostname, current_time,
        )
        self._commit_lease(lease)
        return lease

    def release_lease(
        self,
        client_id: bytes | None,
        hw_addr: "str | bytes | EUI",
        addr: "str | int | IPAddress",
    ) -> bool:
        """Remove the client's committed lease on addr. Returns whether one was removed."""
        hw_addr = to_mac(hw_addr)
        addr = to_address(addr)
        current = self._committed.get(addr)
        if current is None or not current.matches_client(client_id, hw_addr):
            logger.debug(f"Ignoring release of {addr} by {hw_addr}: no matching lease")
            return False
        del self._committed[addr]
        logger.info(f"Released lease {current}")
        return True

    def decline_address(self, addr: "str | int | IPAddress") -> None:
        """Withhold an address reported as in use elsewhere for one lease time."""
        addr = to_address(addr)
        if addr in self._declined or not self._pool.contains(addr):
            return
        exp_time = self._clock.elapsed_ms() + self._pool.lease_time_ms
        self._declined[addr] = exp_time
        if exp_time < self._next_expiration_check:
            self._next_expiration_check = exp_time
        logger.info(f"Address {addr} declined until {exp_time}")

    def get_committed_leases(self) -> list[Lease]:
        """Currently valid committed leases."""
        self._remove_expired(self._clock.elapsed_ms())
        return list(self._committed.values())

    def get_declined_addresses(self) -> set[IPAddress]:
        """Addresses currently marked as declined."""
        self._remove_expired(self._clock.elapsed_ms())
        return set(self._declined)

    def _find_by_client(self, client_id: bytes | None, hw_addr: EUI) -> Lease | None:
        # Unlike dnsmasq there is no fallback to hwAddr when a client id was
        # given, so one interface can hold several leases under different ids.
        for lease in self._committed.values():
            if lease.matches_client(client_id, hw_addr):
                return lease
        return None

    def _check_client_and_make_lease(
        self,
        client_id: bytes | None,
        hw_addr: EUI,
        addr: IPAddress,
        hostname: str | None,
        current_time: int,
        dropping: Lease | None = None,
    ) -> Lease:
        """
        Build the lease the client may commit on addr, without committing it.

        `dropping` is a lease of the same client about to be removed; it does
        not count as holding its address.
        """
        exp_time = current_time + self._pool.lease_time_ms
        current = self._committed.get(addr)
        if current is not None and current is dropping:
            current = None
        if current is not None and not current.matches_client(client_id, hw_addr):
            raise InvalidAddressError("Address in use")

        if current is not None:
            return current.renew(exp_time, hostname)
        if (
            self._pool.contains(addr)
            and self._pool.is_valid_address(addr)
            and not self._pool.is_reserved(addr)
        ):
            return Lease(client_id, hw_addr, addr, exp_time, hostname)
        raise InvalidAddressError("Lease not found and address unavailable")

    def _commit_lease(self, lease: Lease) -> None:
        self._committed[lease.address] = lease
        if lease.expiration < self._next_expiration_check:
            self._next_expiration_check = lease.expiration
        logger.debug(f"Committed lease {lease}")

    def _remove_expired(self, current_time: int) -> None:
        """Drop expired committed leases and declined addresses."""
        if current_time < self._next_expiration_check:
            return

        committed_next = EXPIRATION_NEVER
        for addr, lease in list(self._committed.items()):
            if lease.is_expired(current_time):
                del self._committed[addr]
                logger.info(f"Lease expired: {lease}")
            else:
                committed_next = min(committed_next, lease.expiration)

        declined_next = EXPIRATION_NEVER
        for addr, exp_time in list(self._declined.items()):
            if exp_time <= current_time:
                del self._declined[addr]
                logger.debug(f"Declined address {addr} available again")
            else:
                declined_next = min(declined_next, exp_time)

        self._next_expiration_check = min(committed_next, declined_next)

    def _is_available(self, addr: IPAddress) -> bool:
        return not self._pool.is_reserved(addr) and addr not in self._committed

    def _make_new_offer(
        self,
        client_id: bytes | None,
        hw_addr: EUI,
        exp_time: int,
        hostname: str | None,
    ) -> Lease:
        for addr in self._pool.candidates(hw_addr):
            if self._is_available(addr) and addr not in self._declined:
                return Lease(client_id, hw_addr, addr, exp_time, hostname)

        # Out of addresses: recycle declined ones, oldest first. Entries seen
        # before the recycled one are dropped with it.
        examined = []
        for addr in list(self._declined):
            examined.append(addr)
            if self._pool.is_valid_address(addr) and self._is_available(addr):
                for stale in examined:
                    del self._declined[stale]
                logger.info(f"Recycling declined address {addr}")
                return Lease(client_id, hw_addr, addr, exp_time, hostname)

        logger.warning(f"No address available for offer to {hw_addr} in {self._pool.prefix}")
        raise OutOfAddressesError("No address available for offer")


def _optional_address(value: "str | int | IPAddress | None") -> IPAddress | None:
    if value is None:
        return None
    return to_address(value)
