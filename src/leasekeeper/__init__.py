"""
LeaseKeeper - DHCPv4 Lease Allocation Engine

Decides which IPv4 address a DHCP server offers or confirms for each
client, and tracks the lifecycle of every address in a configured subnet.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

__version__ = "0.1.0"
__author__ = "DNS Science.io"
__copyright__ = "Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company"
