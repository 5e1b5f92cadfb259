"""Shared test fixtures for LeaseKeeper."""

import logging

import pytest

from leasekeeper.config import set_config
from leasekeeper.dhcp.clock import ManualClock
from leasekeeper.dhcp.repository import LeaseRepository

# Seeds in a /24: the index is the byte sum mod 256
MAC_A = "aa:bb:cc:dd:ee:ff"  # -> .251
MAC_1 = "02:00:00:00:00:01"  # -> .3
MAC_2 = "02:00:00:00:00:02"  # -> .4
MAC_3 = "02:00:00:00:00:03"  # -> .5

HOUR_MS = 3600000


@pytest.fixture(autouse=True)
def reset_global_state(monkeypatch):
    for var in (
        "LEASEKEEPER_SUBNET",
        "LEASEKEEPER_RESERVED",
        "LEASEKEEPER_LEASE_TIME_MS",
        "LEASEKEEPER_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    set_config(None)
    yield
    set_config(None)
    logger = logging.getLogger("leasekeeper")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(0)


@pytest.fixture
def make_repo(clock):
    def _make(subnet="192.168.1.0/24", reserved=(), lease_time_ms=HOUR_MS):
        return LeaseRepository(subnet, reserved, lease_time_ms, clock=clock)
    return _make


@pytest.fixture
def repo(make_repo) -> LeaseRepository:
    return make_repo()
