"""
Shared pytest configuration and fixtures for Agent Fleet Bot tests.

Provides common helpers used across both unit and integration test suites:
standard configs (read from the repo's config/ JSON so tests track the
shipped values), a mock ConfigLoader, and factories for market data.
"""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shared.types import AgentRecord, HolderEntry, MarketSnapshot, PricePoint, Strategy, TokenSummary

_CONFIG_DIR = Path(__file__).parent.parent / "config"

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


def load_repo_config(name: str) -> dict:
    with open(_CONFIG_DIR / name, encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Standard configs
# ---------------------------------------------------------------------------

STANDARD_TRADING_CONFIG = load_repo_config("trading.json")
STANDARD_STRATEGIES_CONFIG = load_repo_config("strategies.json")
STANDARD_TIMING_CONFIG = load_repo_config("timing.json")
STANDARD_ADVISORY_CONFIG = load_repo_config("advisory.json")
STANDARD_MARKET_DATA_CONFIG = load_repo_config("market_data.json")
STANDARD_AGENTS_CONFIG = load_repo_config("agents.json")
STANDARD_CHAIN_CONFIG = {
    **load_repo_config("chains/143.json"),
    "contracts": {
        **load_repo_config("chains/143.json")["contracts"],
        "agent_vault": "0x00000000000000000000000000000000000000aa",
    },
}

NOW = 1_700_000_000.0
SAMPLE_TOKEN = "0x1111111111111111111111111111111111111111"
SAMPLE_OPERATOR = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"


# ---------------------------------------------------------------------------
# Config loader fixture (patched singleton)
# ---------------------------------------------------------------------------


def make_config_loader(**overrides) -> MagicMock:
    """
    Mock ConfigLoader returning the standard configs.

    Keyword overrides replace a whole section, e.g. ``trading={...}``.
    """
    loader = MagicMock()
    loader.get_trading_config.return_value = overrides.get("trading", json.loads(json.dumps(STANDARD_TRADING_CONFIG)))
    loader.get_strategies_config.return_value = overrides.get("strategies", STANDARD_STRATEGIES_CONFIG)
    loader.get_timing_config.return_value = overrides.get("timing", STANDARD_TIMING_CONFIG)
    loader.get_advisory_config.return_value = overrides.get("advisory", STANDARD_ADVISORY_CONFIG)
    loader.get_market_data_config.return_value = overrides.get("market_data", STANDARD_MARKET_DATA_CONFIG)
    loader.get_agents_config.return_value = overrides.get("agents", STANDARD_AGENTS_CONFIG)
    loader.get_chain_config.return_value = overrides.get("chain", STANDARD_CHAIN_CONFIG)
    loader.get_app_config.return_value = overrides.get(
        "app", {"database": {"path": ":memory:"}, "logging": {"log_dir": "logs"}}
    )
    loader.get_abi.return_value = []
    return loader


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_trading_config.return_value = {...}
    """
    return make_config_loader()


# ---------------------------------------------------------------------------
# Market data factories
# ---------------------------------------------------------------------------


def make_market(**overrides) -> MarketSnapshot:
    fields = {
        "price": _d("0.001"),
        "reserve_mon": _d("150"),
        "volume_mon": _d("1500"),
        "price_change_1h": _d("3"),
        "price_change_24h": _d("10"),
        "holder_count": 120,
        "total_supply": _d("1000000000"),
        "graduated": False,
    }
    fields.update(overrides)
    return MarketSnapshot(**fields)


def make_token(
    address: str = SAMPLE_TOKEN,
    symbol: str = "TEST",
    age_seconds: float = 3 * 3600,
    now: float = NOW,
    market: MarketSnapshot | None = None,
    with_market: bool = True,
    name: str | None = None,
) -> TokenSummary:
    if market is None and with_market:
        market = make_market()
    return TokenSummary(
        address=address.lower(),
        symbol=symbol,
        name=name if name is not None else f"{symbol} Token",
        created_at=int(now - age_seconds),
        market=market,
    )


def make_agent(**overrides) -> AgentRecord:
    fields = {
        "id": 1,
        "name": "Swing Trader",
        "strategy": Strategy.SWING_TRADER,
        "vault_index": 0,
        "personality": "Calculated oscillation trader.",
        "capital_wei": 100 * 10**18,
    }
    fields.update(overrides)
    return AgentRecord(**fields)


def make_chart(prices: list, volumes: list | None = None, start: int = 0) -> list[PricePoint]:
    volumes = volumes or [100] * len(prices)
    return [
        PricePoint(timestamp=start + i * 3600, price=_d(p), volume=_d(v))
        for i, (p, v) in enumerate(zip(prices, volumes))
    ]


def make_holders(percentages: list) -> list[HolderEntry]:
    return [
        HolderEntry(address=f"0x{i:040x}", balance=_d(p) * 1000, percentage=_d(p))
        for i, p in enumerate(percentages)
    ]
