"""
Unit tests for core/coordinator.py.

Tests verify exclusive claims, same-agent re-claim extension, TTL capping,
lazy expiry, release ownership rules, and the dead-token blacklist TTL.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

TOKEN = "0xABCDEF0000000000000000000000000000000001"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(clock):
    with patch("core.coordinator.setup_module_logger", return_value=MagicMock()):
        from core.coordinator import TokenClaimCoordinator

        return TokenClaimCoordinator(clock=clock, default_ttl=300, max_ttl=600)


@pytest.fixture
def blacklist(clock):
    with patch("core.coordinator.setup_module_logger", return_value=MagicMock()):
        from core.coordinator import DeadTokenBlacklist

        return DeadTokenBlacklist(clock=clock, ttl=3600)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class TestClaim:
    def test_first_claim_wins(self, coordinator):
        assert coordinator.claim(TOKEN, 1, "Sniper") is True
        assert coordinator.claim(TOKEN, 2, "Alpha Hunter") is False

    def test_claims_are_case_insensitive(self, coordinator):
        coordinator.claim(TOKEN, 1, "Sniper")
        assert coordinator.claim(TOKEN.lower(), 2, "Alpha Hunter") is False
        assert coordinator.get_claim(TOKEN.upper().replace("0X", "0x")).agent_id == 1

    def test_same_agent_reclaim_extends(self, coordinator, clock):
        coordinator.claim(TOKEN, 1, "Sniper", reason="first")
        clock.now += 200
        assert coordinator.claim(TOKEN, 1, "Sniper", reason="second") is True

        claim = coordinator.get_claim(TOKEN)
        assert claim.claimed_at == 1000.0
        assert claim.expires_at == 1500.0
        assert claim.reason == "first"

    def test_expired_claim_can_be_taken(self, coordinator, clock):
        coordinator.claim(TOKEN, 1, "Sniper")
        clock.now += 301
        assert coordinator.claim(TOKEN, 2, "Alpha Hunter") is True
        assert coordinator.get_claim(TOKEN).agent_id == 2

    def test_claim_valid_until_expiry(self, coordinator, clock):
        coordinator.claim(TOKEN, 1, "Sniper")
        clock.now += 300
        assert coordinator.is_available(TOKEN) is False

    def test_get_claim_drops_expired_claimant(self, coordinator, clock):
        coordinator.claim(TOKEN, 1, "Sniper")
        clock.now += 300
        assert coordinator.get_claim(TOKEN).agent_id == 1

        clock.now += 1
        assert coordinator.get_claim(TOKEN) is None
        assert coordinator.stats()["active_claims"] == 0

    def test_ttl_capped(self, coordinator):
        coordinator.claim(TOKEN, 1, "Sniper", ttl=10_000)
        assert coordinator.get_claim(TOKEN).expires_at == 1600.0

    def test_all_claims_sweeps_expired(self, coordinator, clock):
        coordinator.claim(TOKEN, 1, "Sniper", ttl=10)
        coordinator.claim("0x02", 2, "Alpha Hunter")
        clock.now += 60
        claims = coordinator.all_claims()
        assert [c.token_address for c in claims] == ["0x02"]

    def test_stats(self, coordinator):
        coordinator.claim("0x01", 1, "Sniper")
        coordinator.claim("0x02", 1, "Sniper")
        coordinator.claim("0x03", 2, "Degen Ape")
        assert coordinator.stats() == {
            "active_claims": 3,
            "claims_by_agent": {"Sniper": 2, "Degen Ape": 1},
        }


class TestRelease:
    def test_release_by_owner(self, coordinator):
        coordinator.claim(TOKEN, 1, "Sniper")
        assert coordinator.release(TOKEN, 1) is True
        assert coordinator.is_available(TOKEN) is True

    def test_release_by_other_agent_is_noop(self, coordinator):
        coordinator.claim(TOKEN, 1, "Sniper")
        assert coordinator.release(TOKEN, 2) is False
        assert coordinator.get_claim(TOKEN).agent_id == 1

    def test_release_unclaimed_is_noop(self, coordinator):
        assert coordinator.release(TOKEN, 1) is False

    def test_release_all_by_agent(self, coordinator):
        coordinator.claim("0x01", 1, "Sniper")
        coordinator.claim("0x02", 1, "Sniper")
        coordinator.claim("0x03", 2, "Degen Ape")
        assert coordinator.release_all_by_agent(1) == 2
        assert len(coordinator.all_claims()) == 1

    def test_reset(self, coordinator):
        coordinator.claim(TOKEN, 1, "Sniper")
        coordinator.reset()
        assert coordinator.all_claims() == []


# ---------------------------------------------------------------------------
# Dead-token blacklist
# ---------------------------------------------------------------------------


class TestDeadTokenBlacklist:
    def test_add_and_query(self, blacklist):
        blacklist.add(TOKEN, "DEAD", 2, "Dead launch")
        assert blacklist.is_blacklisted(TOKEN.lower()) is True
        info = blacklist.get_info(TOKEN)
        assert info.symbol == "DEAD"
        assert info.holder_growth == 2
        assert blacklist.size() == 1

    def test_entry_expires_after_ttl(self, blacklist, clock):
        blacklist.add(TOKEN, "DEAD", 2, "Dead launch")
        clock.now += 3600
        assert blacklist.is_blacklisted(TOKEN) is True
        clock.now += 1
        assert blacklist.is_blacklisted(TOKEN) is False
        assert blacklist.all_entries() == []

    def test_unknown_token(self, blacklist):
        assert blacklist.is_blacklisted(TOKEN) is False
        assert blacklist.get_info(TOKEN) is None
