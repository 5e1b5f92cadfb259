"""
Core IPv4 and hardware address functionality.
"""

from dataclasses import dataclass

from netaddr import EUI, AddrFormatError, IPAddress, IPNetwork, mac_unix_expanded


IPV4_ADDR_BITS = 32
MAC_ADDR_LEN = 6

# 0.0.0.0, sent as source address by clients that have no address yet
UNSPECIFIED_ADDRESS = IPAddress("0.0.0.0")


@dataclass
class SubnetInfo:
    """Information about an IPv4 subnet."""
    network: str
    broadcast: str | None
    netmask: str
    hostmask: str
    prefix_length: int
    num_addresses: int
    num_hosts: int
    first_host: str | None
    last_host: str | None


def to_address(value: "str | int | IPAddress") -> IPAddress:
    """Coerce a string, integer or IPAddress into an IPv4 IPAddress."""
    if isinstance(value, IPAddress):
        addr = value
    else:
        try:
            addr = IPAddress(value, 4) if isinstance(value, int) else IPAddress(value)
        except (AddrFormatError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid IPv4 address: {value!r}") from e
    if addr.version != 4:
        raise ValueError(f"Not an IPv4 address: {value!r}")
    return addr


def to_network(value: "str | IPNetwork") -> IPNetwork:
    """Coerce CIDR notation into a normalized IPv4 IPNetwork."""
    if isinstance(value, IPNetwork):
        net = value
    else:
        try:
            net = IPNetwork(value)
        except (AddrFormatError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid IPv4 prefix: {value!r}") from e
    if net.version != 4:
        raise ValueError(f"Not an IPv4 prefix: {value!r}")
    return net.cidr


def to_mac(value: "str | bytes | EUI") -> EUI:
    """Coerce a MAC string, 6 raw bytes or EUI into an EUI-48."""
    if isinstance(value, EUI):
        if value.version != 48:
            raise ValueError(f"Not a 48-bit hardware address: {value}")
        return EUI(int(value), version=48, dialect=mac_unix_expanded)
    if isinstance(value, (bytes, bytearray)):
        if len(value) != MAC_ADDR_LEN:
            raise ValueError(f"Hardware address must be {MAC_ADDR_LEN} bytes, got {len(value)}")
        return EUI(int.from_bytes(value, "big"), version=48, dialect=mac_unix_expanded)
    try:
        mac = EUI(value, dialect=mac_unix_expanded)
    except (AddrFormatError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid hardware address: {value!r}") from e
    if mac.version != 48:
        raise ValueError(f"Not a 48-bit hardware address: {value!r}")
    return mac


def mac_bytes(mac: EUI) -> bytes:
    """Raw 6-byte form of a hardware address."""
    return int(mac).to_bytes(MAC_ADDR_LEN, "big")


def prefix_to_netmask(prefix_length: int) -> int:
    """Netmask for a prefix length, as a 32-bit integer."""
    if not 0 <= prefix_length <= IPV4_ADDR_BITS:
        raise ValueError(f"Invalid prefix length: {prefix_length}")
    return (0xFFFFFFFF << (IPV4_ADDR_BITS - prefix_length)) & 0xFFFFFFFF


def is_unspecified(addr: IPAddress | None) -> bool:
    """True for a missing address or 0.0.0.0."""
    return addr is None or addr == UNSPECIFIED_ADDRESS


class SubnetCalculator:
    """Calculator for IPv4 subnet facts."""

    @staticmethod
    def calculate(cidr: "str | IPNetwork") -> SubnetInfo:
        """Calculate subnet information from CIDR notation."""
        net = to_network(cidr)

        # /31 and /32 have no network/broadcast split
        if net.prefixlen >= 31:
            first_host = None
            last_host = None
            broadcast = None
            num_hosts = 0 if net.prefixlen == 32 else 2
        else:
            first_host = str(IPAddress(net.first + 1, 4))
            last_host = str(IPAddress(net.last - 1, 4))
            broadcast = str(IPAddress(net.last, 4))
            num_hosts = net.size - 2

        return SubnetInfo(
            network=str(net.network),
            broadcast=broadcast,
            netmask=str(net.netmask),
            hostmask=str(net.hostmask),
            prefix_length=net.prefixlen,
            num_addresses=net.size,
            num_hosts=num_hosts,
            first_host=first_host,
            last_host=last_host,
        )


def calculate_subnet(cidr: "str | IPNetwork") -> SubnetInfo:
    """Calculate subnet information from CIDR notation."""
    return SubnetCalculator.calculate(cidr)
