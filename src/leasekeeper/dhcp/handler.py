"""
Dispatch of decoded DHCP client messages to the lease repository.

A transport decodes packets into ClientMessage objects and sends back the
ServerReply, if any. Nothing here touches sockets or the wire format.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from netaddr import EUI, IPAddress

from leasekeeper.dhcp.exceptions import InvalidAddressError, OutOfAddressesError
from leasekeeper.dhcp.lease import Lease
from leasekeeper.dhcp.repository import LeaseRepository
from leasekeeper.ip.core import to_address, to_mac

logger = logging.getLogger(__name__)


class DHCPMessageType(IntEnum):
    """DHCP message types (Option 53)."""
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8


@dataclass
class ClientMessage:
    """Fields of a client message that matter for lease decisions."""
    message_type: DHCPMessageType
    hw_addr: EUI
    client_id: bytes | None = None
    src_addr: IPAddress | None = None  # ciaddr, or packet source
    relay_addr: IPAddress | None = None  # giaddr
    requested_addr: IPAddress | None = None  # option 50
    server_id_set: bool = False  # option 54 present
    hostname: str | None = None  # option 12

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientMessage":
        """Build a message from plain values, as found in replay files."""
        raw_type = data["type"]
        if isinstance(raw_type, str):
            message_type = DHCPMessageType[raw_type.upper()]
        else:
            message_type = DHCPMessageType(raw_type)

        client_id = data.get("client_id")
        return cls(
            message_type=message_type,
            hw_addr=to_mac(data["mac"]),
            client_id=bytes.fromhex(client_id) if client_id else None,
            src_addr=to_address(data["src"]) if data.get("src") else None,
            relay_addr=to_address(data["relay"]) if data.get("relay") else None,
            requested_addr=to_address(data["requested"]) if data.get("requested") else None,
            server_id_set=bool(data.get("server_id", False)),
            hostname=data.get("hostname"),
        )


@dataclass
class ServerReply:
    """Reply the server should send back, if any."""
    message_type: DHCPMessageType
    lease: Lease | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.message_type.name,
            "lease": self.lease.to_dict() if self.lease else None,
            "reason": self.reason,
        }


class LeaseRequestHandler:
    """
    Maps client messages to repository operations.

    Usage:
        handler = LeaseRequestHandler(repo)
        reply = handler.handle(message)
        if reply is not None:
            transport.send(reply)
    """

    def __init__(self, repository: LeaseRepository):
        self.repository = repository

    def handle(self, message: ClientMessage) -> ServerReply | None:
        """Process one message. Returns None when no reply should be sent."""
        handlers = {
            DHCPMessageType.DISCOVER: self._handle_discover,
            DHCPMessageType.REQUEST: self._handle_request,
            DHCPMessageType.RELEASE: self._handle_release,
            DHCPMessageType.DECLINE: self._handle_decline,
        }
        handler = handlers.get(message.message_type)
        if handler is None:
            logger.debug(f"Ignoring DHCP{message.message_type.name} from {message.hw_addr}")
            return None
        return handler(message)

    def _handle_discover(self, message: ClientMessage) -> ServerReply | None:
        try:
            lease = self.repository.offer(
                message.client_id,
                message.hw_addr,
                message.src_addr,
                message.relay_addr,
                message.requested_addr,
                message.hostname,
            )
        except OutOfAddressesError as e:
            logger.warning(f"Dropping DHCPDISCOVER from {message.hw_addr}: {e}")
            return None
        except InvalidAddressError as e:
            logger.info(f"Dropping DHCPDISCOVER from {message.hw_addr}: {e}")
            return None
        return ServerReply(DHCPMessageType.OFFER, lease)

    def _handle_request(self, message: ClientMessage) -> ServerReply | None:
        try:
            lease = self.repository.request_lease(
                message.client_id,
                message.hw_addr,
                message.src_addr,
                message.requested_addr,
                message.server_id_set,
                message.hostname,
            )
        except InvalidAddressError as e:
            if message.requested_addr is not None:
                # SELECTING or INIT-REBOOT
                logger.info(f"Sending DHCPNAK to {message.hw_addr}: {e}")
                return ServerReply(DHCPMessageType.NAK, reason=str(e))
            logger.info(f"Dropping DHCPREQUEST from {message.hw_addr}: {e}")
            return None
        return ServerReply(DHCPMessageType.ACK, lease)

    def _handle_release(self, message: ClientMessage) -> None:
        if message.src_addr is None:
            logger.debug(f"Ignoring DHCPRELEASE without address from {message.hw_addr}")
            return None
        self.repository.release_lease(message.client_id, message.hw_addr, message.src_addr)
        return None

    def _handle_decline(self, message: ClientMessage) -> None:
        if message.requested_addr is None:
            logger.debug(f"Ignoring DHCPDECLINE without address from {message.hw_addr}")
            return None
        self.repository.decline_address(message.requested_addr)
        return None

