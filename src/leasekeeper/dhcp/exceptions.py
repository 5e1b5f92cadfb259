"""
Lease allocation errors.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""


class LeaseError(Exception):
    """Base error for lease allocation failures."""
    pass


class OutOfAddressesError(LeaseError):
    """The pool has no assignable address for a new client."""
    pass


class InvalidAddressError(LeaseError):
    """A request is inconsistent, from a foreign subnet, or conflicts with another client."""
    pass
