"""
Unit tests for core/data_service.py.

Tests verify:
- Recent-token parsing with inline market info (wei -> MON conversion)
- Market snapshot, chart and holder parsing
- Per-endpoint cache behavior
- Graceful degradation on empty, malformed, rate-limited and failed responses

Mock strategy: `_get_json` is patched to return known API responses; the
HTTP layer is exercised through aioresponses. No real API requests are made.
"""

from __future__ import annotations

import re
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aioresponses import aioresponses

from tests.conftest import make_config_loader

BASE_URL = "https://api.nadapp.net"
TOKEN = "0xAbC0000000000000000000000000000000000001"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Patch ConfigLoader and env to return the standard market data config."""
    with (
        patch("core.data_service.get_config", return_value=make_config_loader()) as mock_cfg,
        patch("core.data_service.get_env_var", return_value=""),
        patch("core.data_service.setup_module_logger", return_value=MagicMock()),
    ):
        yield mock_cfg


@pytest.fixture
def data_service(mock_config):
    """Create MarketDataService with mocked config."""
    from core.data_service import MarketDataService

    return MarketDataService(session=None)


# ---------------------------------------------------------------------------
# Sample nad.fun API responses
# ---------------------------------------------------------------------------

SAMPLE_MARKET_INFO = {
    "market_type": "CURVE",
    "price_native": "0.00042",
    "reserve_native": "12500000000000000000",  # 12.5 MON
    "volume": "3400000000000000000000",  # 3400 MON
    "holder_count": 87,
    "total_supply": "1000000000",
}

SAMPLE_RECENT = {
    "tokens": [
        {
            "token_info": {
                "token_id": TOKEN,
                "symbol": "FROG",
                "name": "Frog Coin",
                "created_at": 1_699_990_000,
                "creator": "0xcreator",
            },
            "market_info": SAMPLE_MARKET_INFO,
            "percent_1h": "4.5",
            "percent": "-12",
        },
        {"token_info": {"symbol": "NOADDR"}},
        {
            "token_info": {"token_id": "0x02", "symbol": "BARE", "name": "Bare", "created_at": 1},
        },
    ]
}


# ---------------------------------------------------------------------------
# Recent tokens
# ---------------------------------------------------------------------------


class TestRecentTokens:
    @pytest.mark.asyncio
    async def test_parse_recent_tokens(self, data_service):
        data_service._get_json = AsyncMock(return_value=SAMPLE_RECENT)
        tokens = await data_service.list_recent_tokens(limit=50)

        assert [t.symbol for t in tokens] == ["FROG", "BARE"]
        frog = tokens[0]
        assert frog.address == TOKEN.lower()
        assert frog.created_at == 1_699_990_000
        assert frog.market.reserve_mon == Decimal("12.5")
        assert frog.market.volume_mon == Decimal("3400")
        assert frog.market.price_change_1h == Decimal("4.5")
        assert frog.market.price_change_24h == Decimal("-12")
        assert frog.market.holder_count == 87
        assert frog.market.graduated is False
        assert tokens[1].market is None

    @pytest.mark.asyncio
    async def test_recent_tokens_cached(self, data_service):
        mock_json = AsyncMock(return_value=SAMPLE_RECENT)
        data_service._get_json = mock_json

        await data_service.list_recent_tokens(limit=50)
        await data_service.list_recent_tokens(limit=50)
        assert mock_json.call_count == 1

        data_service.clear_cache()
        await data_service.list_recent_tokens(limit=50)
        assert mock_json.call_count == 2

    @pytest.mark.asyncio
    async def test_recent_tokens_failure_is_empty(self, data_service):
        data_service._get_json = AsyncMock(return_value=None)
        assert await data_service.list_recent_tokens() == []


# ---------------------------------------------------------------------------
# Market snapshot
# ---------------------------------------------------------------------------


class TestMarketSnapshot:
    @pytest.mark.asyncio
    async def test_parse_snapshot(self, data_service):
        data_service._get_json = AsyncMock(
            return_value={
                "market_info": {**SAMPLE_MARKET_INFO, "market_type": "DEX"},
                "percent_1h": "1",
                "percent_24h": "2",
            }
        )
        snapshot = await data_service.get_market_snapshot(TOKEN)
        assert snapshot.price == Decimal("0.00042")
        assert snapshot.price_change_24h == Decimal("2")
        assert snapshot.graduated is True

    @pytest.mark.asyncio
    async def test_missing_market_info(self, data_service):
        data_service._get_json = AsyncMock(return_value={"token_info": {}})
        assert await data_service.get_market_snapshot(TOKEN) is None

    @pytest.mark.asyncio
    async def test_non_numeric_fields_read_as_zero(self, data_service):
        data_service._get_json = AsyncMock(
            return_value={"market_info": {**SAMPLE_MARKET_INFO, "price_native": "NaN", "volume": "abc"}}
        )
        snapshot = await data_service.get_market_snapshot(TOKEN)
        assert snapshot.price == Decimal("0")
        assert snapshot.volume_mon == Decimal("0")


# ---------------------------------------------------------------------------
# Chart / holders
# ---------------------------------------------------------------------------


class TestChartAndHolders:
    @pytest.mark.asyncio
    async def test_chart_sorted_oldest_first(self, data_service):
        data_service._get_json = AsyncMock(
            return_value={
                "chart": [
                    {"timestamp": 200, "price": "2", "volume": "10"},
                    {"timestamp": 100, "price": "1", "volume": "5"},
                    "garbage",
                ]
            }
        )
        points = await data_service.get_price_series(TOKEN)
        assert [p.timestamp for p in points] == [100, 200]
        assert points[1].price == Decimal("2")

    @pytest.mark.asyncio
    async def test_chart_uses_configured_interval(self, data_service):
        mock_json = AsyncMock(return_value={"chart": []})
        data_service._get_json = mock_json
        await data_service.get_price_series(TOKEN)
        assert mock_json.call_args.args[1] == {"interval": "1h"}

    @pytest.mark.asyncio
    async def test_holders(self, data_service):
        data_service._get_json = AsyncMock(
            return_value={"holders": [{"address": "0xa", "balance": "100", "percentage": "12.5"}]}
        )
        holders = await data_service.get_holders(TOKEN)
        assert holders[0].percentage == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_holders_failure_is_empty(self, data_service):
        data_service._get_json = AsyncMock(return_value=None)
        assert await data_service.get_holders(TOKEN) == []


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------


class TestHttp:
    @pytest.mark.asyncio
    async def test_successful_request(self, data_service):
        with aioresponses() as m:
            m.get(re.compile(rf"^{re.escape(BASE_URL)}/order/latest_trade.*"), payload=SAMPLE_RECENT)
            tokens = await data_service.list_recent_tokens()
        await data_service.close()
        assert len(tokens) == 2

    @pytest.mark.asyncio
    async def test_rate_limited_returns_none(self, data_service):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/trade/market/{TOKEN}", status=429)
            assert await data_service.get_market_snapshot(TOKEN) is None
        await data_service.close()

    @pytest.mark.asyncio
    async def test_server_error_returns_none(self, data_service):
        with aioresponses() as m:
            m.get(f"{BASE_URL}/token/holders/{TOKEN}", status=500, body="oops")
            assert await data_service.get_holders(TOKEN) == []
        await data_service.close()
