"""
Unit tests for core/safety.py.

Tests verify default-to-safe behavior, trade size gating, the 24h trade
rate limit, global pause, the sentinel file, and dry-run submission gating.
"""

from __future__ import annotations

import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

STANDARD_CONFIG = {
    "dry_run": False,
    "max_trade_mon": "15",
    "max_trades_per_24h": 3,
    "pause_sentinel": "PAUSE",
}


def _make_safety(config: dict | None = None):
    """Create a SafetyState with patched config, env and logger."""
    if config is None:
        config = STANDARD_CONFIG
    with (
        patch("core.safety.get_config") as mock_cfg,
        patch("core.safety.setup_module_logger") as mock_logger,
        patch("core.safety.get_env_var", side_effect=lambda name, default, var_type: default),
    ):
        mock_loader = MagicMock()
        mock_loader.get_trading_config.return_value = {"safety": config} if config else {}
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from core.safety import SafetyState

        return SafetyState()


@pytest.fixture
def safety_with_config(tmp_path):
    safety = _make_safety(STANDARD_CONFIG)
    safety._sentinel_file = tmp_path / "PAUSE"
    return safety


@pytest.fixture
def safety_missing_config(tmp_path):
    safety = _make_safety({})
    safety._sentinel_file = tmp_path / "PAUSE"
    return safety


@pytest.fixture
def safety_dry_run(tmp_path):
    safety = _make_safety({**STANDARD_CONFIG, "dry_run": True})
    safety._sentinel_file = tmp_path / "PAUSE"
    return safety


# ---------------------------------------------------------------------------
# Default-to-safe tests
# ---------------------------------------------------------------------------


class TestDefaultToSafe:

    def test_missing_config_defaults_to_dry_run(self, safety_missing_config):
        assert safety_missing_config.is_dry_run is True
        assert safety_missing_config.max_trade_mon == Decimal("0")

    def test_missing_config_blocks_all_buys(self, safety_missing_config):
        check = safety_missing_config.can_trade(Decimal("1"))
        assert check.can_proceed is False

    def test_missing_config_still_allows_exits(self, safety_missing_config):
        assert safety_missing_config.can_trade().can_proceed is True


# ---------------------------------------------------------------------------
# can_trade tests
# ---------------------------------------------------------------------------


class TestCanTrade:

    def test_allows_valid_trade(self, safety_with_config):
        check = safety_with_config.can_trade(Decimal("5"))
        assert check.can_proceed is True
        assert check.reason == "All checks passed"

    def test_blocks_excessive_amount(self, safety_with_config):
        check = safety_with_config.can_trade(Decimal("20"))
        assert check.can_proceed is False
        assert "exceeds max" in check.reason

    def test_blocks_after_24h_limit(self, safety_with_config):
        for _ in range(3):
            safety_with_config.record_action()

        check = safety_with_config.can_trade(Decimal("5"))
        assert check.can_proceed is False
        assert "24h trade limit" in check.reason

    def test_old_actions_pruned(self, safety_with_config):
        for _ in range(3):
            safety_with_config._action_timestamps.append(time.time() - 90_000)

        assert safety_with_config.can_trade(Decimal("5")).can_proceed is True
        assert len(safety_with_config._action_timestamps) == 0

    def test_exit_ignores_rate_limit(self, safety_with_config):
        for _ in range(3):
            safety_with_config.record_action()
        check = safety_with_config.can_trade()
        assert check.can_proceed is True
        assert check.reason == "Exit allowed"


# ---------------------------------------------------------------------------
# can_submit_tx tests
# ---------------------------------------------------------------------------


class TestCanSubmitTx:

    def test_allows_live_submission(self, safety_with_config):
        assert safety_with_config.can_submit_tx().can_proceed is True

    def test_dry_run_blocks_submission(self, safety_dry_run):
        check = safety_dry_run.can_submit_tx()
        assert check.can_proceed is False
        assert "Dry run" in check.reason

    def test_dry_run_does_not_block_trade_decisions(self, safety_dry_run):
        assert safety_dry_run.can_trade(Decimal("5")).can_proceed is True


# ---------------------------------------------------------------------------
# Pause and resume tests
# ---------------------------------------------------------------------------


class TestPauseAndResume:

    def test_global_pause_blocks_everything(self, safety_with_config):
        safety_with_config.trigger_global_pause("test pause")

        buy_check = safety_with_config.can_trade(Decimal("5"))
        exit_check = safety_with_config.can_trade()
        tx_check = safety_with_config.can_submit_tx()

        assert buy_check.can_proceed is False
        assert "Global pause" in buy_check.reason
        assert exit_check.can_proceed is False
        assert tx_check.can_proceed is False

    def test_resume_clears_pause(self, safety_with_config):
        safety_with_config.trigger_global_pause("test pause")
        safety_with_config.resume()

        assert safety_with_config.can_trade(Decimal("5")).can_proceed is True


# ---------------------------------------------------------------------------
# Sentinel file test
# ---------------------------------------------------------------------------


class TestSentinelFile:

    def test_pause_sentinel_file_triggers_pause(self, safety_with_config):
        safety_with_config._sentinel_file.write_text("")
        assert safety_with_config.is_paused is True

    def test_no_sentinel_no_pause(self, safety_with_config):
        assert safety_with_config.is_paused is False
