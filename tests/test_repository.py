"""Tests for the lease repository."""

import pytest
from netaddr import IPAddress

from leasekeeper.config import PoolConfig
from leasekeeper.dhcp.exceptions import InvalidAddressError, LeaseError, OutOfAddressesError
from leasekeeper.dhcp.lease import EXPIRATION_NEVER
from leasekeeper.dhcp.repository import LeaseRepository
from tests.conftest import HOUR_MS, MAC_1, MAC_2, MAC_3, MAC_A

ANY = "0.0.0.0"


def addresses(leases):
    return sorted(str(lease.address) for lease in leases)


def commit(repo, mac, client_id=None, hostname=None):
    """Run a DISCOVER/REQUEST exchange and return the committed lease."""
    offer = repo.offer(client_id, mac, ANY, hostname=hostname)
    return repo.request_lease(client_id, mac, ANY, offer.address, True, hostname)


class TestOffer:

    def test_new_client_gets_seeded_address(self, repo, clock):
        clock.set(1000)
        lease = repo.offer(None, MAC_A, ANY, None, None, "host1")
        assert str(lease.address) == "192.168.1.251"
        assert lease.hostname == "host1"
        assert lease.client_id is None
        assert lease.expiration == 1000 + HOUR_MS

    def test_offer_is_not_committed(self, repo):
        repo.offer(None, MAC_A, ANY)
        repo.offer(b"\x01", MAC_1, ANY)
        assert repo.get_committed_leases() == []

    def test_repeated_offers_are_stable(self, repo, clock):
        first = repo.offer(None, MAC_A, ANY)
        clock.advance(5000)
        second = repo.offer(None, MAC_A, ANY)
        assert first.address == second.address

    def test_existing_lease_is_offered_extended_but_not_committed(self, repo, clock):
        committed = commit(repo, MAC_1, hostname="old")
        clock.advance(1000)
        offer = repo.offer(None, MAC_1, ANY, hostname="new")
        assert offer.address == committed.address
        assert offer.expiration == 1000 + HOUR_MS
        assert offer.hostname == "new"
        assert repo.get_committed_leases() == [committed]

    def test_requested_address_is_honored_when_free(self, repo):
        lease = repo.offer(None, MAC_1, ANY, req_addr="192.168.1.42")
        assert str(lease.address) == "192.168.1.42"

    @pytest.mark.parametrize("requested", [
        "192.168.1.0",
        "192.168.1.255",
        "10.0.0.42",
        "192.168.1.10",  # reserved
    ])
    def test_unusable_requested_address_falls_back_to_seed(self, make_repo, requested):
        repo = make_repo(reserved=["192.168.1.10"])
        lease = repo.offer(None, MAC_1, ANY, req_addr=requested)
        assert str(lease.address) == "192.168.1.3"

    def test_requested_address_taken_falls_back_to_seed(self, repo):
        commit(repo, MAC_2)  # .4
        lease = repo.offer(None, MAC_1, ANY, req_addr="192.168.1.4")
        assert str(lease.address) == "192.168.1.3"

    def test_skips_reserved_committed_and_declined(self, make_repo):
        repo = make_repo(reserved=["192.168.1.3"])
        repo.decline_address("192.168.1.4")
        commit(repo, MAC_3)  # .5
        lease = repo.offer(None, MAC_1, ANY)
        assert str(lease.address) == "192.168.1.6"

    def test_source_outside_subnet_is_rejected(self, repo):
        with pytest.raises(InvalidAddressError, match="outside of subnet"):
            repo.offer(None, MAC_1, "10.0.0.5")

    def test_relay_outside_subnet_is_rejected(self, repo):
        with pytest.raises(InvalidAddressError, match="relay"):
            repo.offer(None, MAC_1, ANY, relay_addr="10.0.0.1")

    def test_source_and_relay_inside_subnet_accepted(self, repo):
        lease = repo.offer(None, MAC_1, "192.168.1.77", relay_addr="192.168.1.1")
        assert str(lease.address) == "192.168.1.3"

    def test_valid_requested_address_skips_source_check(self, repo):
        lease = repo.offer(None, MAC_1, "10.0.0.5", req_addr="192.168.1.42")
        assert str(lease.address) == "192.168.1.42"

    def test_client_id_lease_not_reused_by_mac_only_client(self, repo):
        committed = commit(repo, MAC_1, client_id=b"\x01")
        offer = repo.offer(None, MAC_1, ANY)
        assert offer.address != committed.address
        assert offer.client_id is None


class TestPoolExhaustion:

    def test_out_of_addresses(self, make_repo):
        repo = make_repo("10.0.0.0/30")
        assert addresses([commit(repo, MAC_1), commit(repo, MAC_2)]) == ["10.0.0.1", "10.0.0.2"]
        with pytest.raises(OutOfAddressesError):
            repo.offer(None, MAC_3, ANY)

    def test_declined_address_is_recycled_when_exhausted(self, make_repo):
        repo = make_repo("10.0.0.0/30")
        commit(repo, MAC_1)
        commit(repo, MAC_2)
        assert repo.release_lease(None, MAC_2, "10.0.0.2")
        repo.decline_address("10.0.0.2")

        lease = repo.offer(None, MAC_3, ANY)
        assert str(lease.address) == "10.0.0.2"
        assert repo.get_declined_addresses() == set()

    def test_failed_offer_keeps_declined_set(self, make_repo):
        repo = make_repo("10.0.0.0/30")
        commit(repo, MAC_1)
        commit(repo, MAC_2)
        repo.decline_address("10.0.0.1")
        with pytest.raises(OutOfAddressesError):
            repo.offer(None, MAC_3, ANY)
        assert repo.get_declined_addresses() == {IPAddress("10.0.0.1")}

    def test_declined_addresses_recycled_in_decline_order(self, make_repo):
        repo = make_repo("10.0.0.0/29")
        for i in range(1, 7):
            commit(repo, f"02:00:00:00:00:{i:02x}")
        held = {str(lease.address): lease for lease in repo.get_committed_leases()}
        assert sorted(held, key=lambda a: int(IPAddress(a))) == [f"10.0.0.{i}" for i in range(1, 7)]

        repo.decline_address("10.0.0.1")
        for addr in ("10.0.0.5", "10.0.0.6"):
            lease = held[addr]
            assert repo.release_lease(lease.client_id, lease.hw_addr, lease.address)
        repo.decline_address("10.0.0.6")
        repo.decline_address("10.0.0.5")

        lease = repo.offer(None, "02:00:00:00:00:07", ANY)
        assert str(lease.address) == "10.0.0.6"
        assert repo.get_declined_addresses() == {IPAddress("10.0.0.5")}

    def test_exhaustion_recovers_after_expiry(self, make_repo, clock):
        repo = make_repo("10.0.0.0/30", lease_time_ms=1000)
        commit(repo, MAC_1)
        commit(repo, MAC_2)
        with pytest.raises(LeaseError):
            repo.offer(None, MAC_3, ANY)
        clock.advance(1000)
        assert str(repo.offer(None, MAC_3, ANY).address) == "10.0.0.1"


class TestRequestSelecting:

    def test_commits_offered_address(self, repo):
        offer = repo.offer(None, MAC_A, ANY, hostname="host1")
        lease = repo.request_lease(None, MAC_A, offer.address, offer.address, True, "host1")
        assert lease.address == offer.address
        assert repo.get_committed_leases() == [lease]

    def test_drops_previous_lease(self, repo):
        old = commit(repo, MAC_1)
        lease = repo.request_lease(None, MAC_1, ANY, "192.168.1.50", True)
        assert str(lease.address) == "192.168.1.50"
        assert old.address not in [l.address for l in repo.get_committed_leases()]
        assert len(repo.get_committed_leases()) == 1

    def test_reselecting_same_address_makes_fresh_lease(self, repo, clock):
        commit(repo, MAC_1, hostname="old")
        clock.advance(10)
        lease = repo.request_lease(None, MAC_1, ANY, "192.168.1.3", True)
        assert lease.hostname is None
        assert lease.expiration == 10 + HOUR_MS

    def test_address_of_other_client_is_refused_without_dropping(self, repo):
        old = commit(repo, MAC_1)
        other = commit(repo, MAC_2)
        with pytest.raises(InvalidAddressError, match="in use"):
            repo.request_lease(None, MAC_1, ANY, other.address, True)
        assert addresses(repo.get_committed_leases()) == addresses([old, other])

    def test_unassignable_address_is_refused(self, make_repo):
        repo = make_repo(reserved=["192.168.1.10"])
        for addr in ["192.168.1.10", "192.168.1.0", "192.168.1.255", "10.0.0.3"]:
            with pytest.raises(InvalidAddressError, match="unavailable"):
                repo.request_lease(None, MAC_1, ANY, addr, True)
        assert repo.get_committed_leases() == []


class TestRequestInitReboot:

    def test_confirms_own_lease(self, repo, clock):
        lease = commit(repo, MAC_1)
        clock.advance(100)
        confirmed = repo.request_lease(None, MAC_1, ANY, lease.address, False)
        assert confirmed.address == lease.address
        assert confirmed.expiration == 100 + HOUR_MS

    def test_wrong_cached_address_is_refused(self, repo):
        commit(repo, MAC_1)
        with pytest.raises(InvalidAddressError, match="INIT-REBOOT"):
            repo.request_lease(None, MAC_1, ANY, "192.168.1.4", False)

    def test_unknown_client_gets_free_address(self, repo):
        lease = repo.request_lease(None, MAC_2, ANY, "192.168.1.200", False, "laptop")
        assert str(lease.address) == "192.168.1.200"
        assert repo.get_committed_leases() == [lease]

    def test_unknown_client_cannot_take_held_address(self, repo):
        held = commit(repo, MAC_A)
        with pytest.raises(InvalidAddressError):
            repo.request_lease(None, MAC_2, held.address, held.address, False)
        assert repo.get_committed_leases() == [held]


class TestRequestRenewing:

    def test_renews_and_updates_hostname(self, repo, clock):
        lease = commit(repo, MAC_1, hostname="old")
        clock.advance(HOUR_MS // 2)
        renewed = repo.request_lease(None, MAC_1, lease.address, None, False, "new")
        assert renewed.address == lease.address
        assert renewed.expiration == HOUR_MS // 2 + HOUR_MS
        assert renewed.hostname == "new"
        assert repo.get_committed_leases() == [renewed]

    def test_keeps_hostname_when_not_sent(self, repo, clock):
        lease = commit(repo, MAC_1, hostname="old")
        clock.advance(10)
        renewed = repo.request_lease(None, MAC_1, lease.address, None, False)
        assert renewed.hostname == "old"

    def test_wrong_address_is_refused(self, repo):
        commit(repo, MAC_1)
        with pytest.raises(InvalidAddressError, match="RENEWING"):
            repo.request_lease(None, MAC_1, "192.168.1.99", None, False)

    def test_lost_lease_is_recreated(self, repo):
        lease = repo.request_lease(None, MAC_1, "192.168.1.99", None, False)
        assert str(lease.address) == "192.168.1.99"

    def test_missing_client_address_is_refused(self, repo):
        with pytest.raises(InvalidAddressError):
            repo.request_lease(None, MAC_1, None, None, False)


class TestReleaseAndDecline:

    def test_release_own_lease(self, repo):
        lease = commit(repo, MAC_1)
        assert repo.release_lease(None, MAC_1, lease.address)
        assert repo.get_committed_leases() == []
        # Duplicate RELEASE is a no-op
        assert not repo.release_lease(None, MAC_1, lease.address)

    def test_release_by_other_client_is_ignored(self, repo):
        lease = commit(repo, MAC_1)
        assert not repo.release_lease(None, MAC_2, lease.address)
        assert not repo.release_lease(b"\x01", MAC_1, lease.address)
        assert repo.get_committed_leases() == [lease]

    def test_release_unknown_address(self, repo):
        assert not repo.release_lease(None, MAC_1, "192.168.1.100")

    def test_decline_records_address(self, repo, clock):
        clock.set(50)
        repo.decline_address("192.168.1.20")
        assert repo.get_declined_addresses() == {IPAddress("192.168.1.20")}
        assert repo.next_expiration_check == 50 + HOUR_MS

    def test_decline_outside_subnet_is_ignored(self, repo):
        repo.decline_address("10.0.0.1")
        assert repo.get_declined_addresses() == set()

    def test_duplicate_decline_keeps_first_expiration(self, repo, clock):
        repo.decline_address("192.168.1.20")
        clock.advance(HOUR_MS - 1)
        repo.decline_address("192.168.1.20")
        clock.advance(1)
        assert repo.get_declined_addresses() == set()


class TestExpiration:

    def test_lease_present_until_expiration(self, make_repo, clock):
        repo = make_repo(lease_time_ms=1000)
        lease = commit(repo, MAC_1)
        assert lease.expiration == 1000
        clock.set(999)
        assert repo.get_committed_leases() == [lease]
        clock.set(1000)
        assert repo.get_committed_leases() == []

    def test_watermark_tracks_earliest_expiration(self, make_repo, clock):
        repo = make_repo(lease_time_ms=1000)
        assert repo.next_expiration_check == EXPIRATION_NEVER
        commit(repo, MAC_1)
        assert repo.next_expiration_check == 1000
        clock.set(100)
        repo.decline_address("192.168.1.20")
        assert repo.next_expiration_check == 1000

        clock.set(500)
        repo.request_lease(None, MAC_1, "192.168.1.3", None, False)
        # Renewal can leave the watermark early, never late
        assert repo.next_expiration_check == 1000

        clock.set(1000)
        assert len(repo.get_committed_leases()) == 1
        assert repo.next_expiration_check == 1100
        clock.set(1100)
        assert repo.get_declined_addresses() == set()
        assert repo.next_expiration_check == 1500
        clock.set(1500)
        assert repo.get_committed_leases() == []
        assert repo.next_expiration_check == EXPIRATION_NEVER

    def test_declined_address_is_offered_again_after_expiry(self, make_repo, clock):
        repo = make_repo(lease_time_ms=1000)
        repo.decline_address("192.168.1.3")
        assert str(repo.offer(None, MAC_1, ANY).address) == "192.168.1.4"
        clock.set(1000)
        assert str(repo.offer(None, MAC_1, ANY).address) == "192.168.1.3"


class TestUpdateParams:

    def test_drops_entries_outside_new_subnet(self, make_repo):
        repo = make_repo("10.0.0.0/23")
        low = repo.request_lease(None, MAC_1, ANY, "10.0.0.10", True)
        repo.request_lease(None, MAC_2, ANY, "10.0.1.10", True)
        repo.decline_address("10.0.1.20")
        repo.decline_address("10.0.0.20")

        repo.update_params("10.0.0.0/24", [], HOUR_MS)
        assert repo.get_committed_leases() == [low]
        assert repo.get_declined_addresses() == {IPAddress("10.0.0.20")}

    def test_drops_entries_now_reserved(self, repo):
        lease = commit(repo, MAC_1)
        repo.decline_address("192.168.1.20")
        repo.update_params("192.168.1.0/24", [str(lease.address), "192.168.1.20"], HOUR_MS)
        assert repo.get_committed_leases() == []
        assert repo.get_declined_addresses() == set()

    def test_new_lease_time_applies_to_new_leases(self, repo):
        repo.update_params("192.168.1.0/24", [], 5000)
        assert commit(repo, MAC_1).expiration == 5000

    def test_invalid_params_keep_previous_pool(self, repo):
        with pytest.raises(ValueError):
            repo.update_params("192.168.1.0/31", [], HOUR_MS)
        assert str(repo.pool.prefix) == "192.168.1.0/24"


def test_from_config(clock):
    config = PoolConfig(subnet="10.9.0.0/24", reserved=["10.9.0.1"], lease_time_ms=60000)
    repo = LeaseRepository.from_config(config, clock=clock)
    assert str(repo.pool.prefix) == "10.9.0.0/24"
    assert repo.pool.is_reserved(IPAddress("10.9.0.1"))
    assert repo.pool.lease_time_ms == 60000


def test_committed_addresses_stay_unique(make_repo, clock):
    repo = make_repo("10.0.0.0/28", lease_time_ms=10000)
    macs = [f"02:00:00:00:01:{i:02x}" for i in range(20)]
    for step, mac in enumerate(macs * 3):
        clock.advance(700)
        try:
            offer = repo.offer(None, mac, ANY)
            repo.request_lease(None, mac, ANY, offer.address, True)
        except OutOfAddressesError:
            pass
        if step % 4 == 0:
            # INIT-REBOOT onto a fixed address, only one client can hold it
            try:
                repo.request_lease(None, mac, ANY, "10.0.0.7", False)
            except InvalidAddressError:
                pass
        leases = repo.get_committed_leases()
        assert len({lease.address for lease in leases}) == len(leases)
        assert len(leases) <= 14
